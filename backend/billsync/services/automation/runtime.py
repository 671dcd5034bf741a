"""Puppeteer runtime executed by the remote automation capability.

The runtime interprets an ``AutomationScript`` plan: it logs in, classifies the
post-login page (portal error, second factor, still on the form), walks to the
bills view and returns a page snapshot. It never parses amounts or dates; that
happens in ``billsync.services.providers.extraction`` so the same plan works
with any backend able to produce a snapshot.

``context.credentials`` carries ``{username, password}``.
"""

RUNTIME_TEMPLATE = r"""
module.exports = async ({ page, context }) => {
  const plan = __PLAN__;
  const credentials = (context && context.credentials) || {};
  const debug = [];
  const log = (step, extra) => debug.push(Object.assign({ step, at: new Date().toISOString() }, extra || {}));
  const nav = { waitUntil: 'networkidle2', timeout: plan.navigation_timeout_ms };
  const sleep = (ms) => new Promise((resolve) => setTimeout(resolve, ms));

  const first = async (candidates) => {
    for (const selector of candidates || []) {
      try {
        const handle = await page.$(selector);
        if (handle) return { handle, selector };
      } catch (e) {
        log('selector_invalid', { selector, message: String(e && e.message) });
      }
    }
    return null;
  };

  const textOf = async (handle) => {
    try {
      return ((await page.evaluate((el) => el.innerText || el.textContent || '', handle)) || '').trim();
    } catch (e) {
      return '';
    }
  };

  const bodyText = async () => {
    try {
      return await page.evaluate(() => (document.body ? document.body.innerText : ''));
    } catch (e) {
      return '';
    }
  };

  const screenshot = async () => {
    try {
      return await page.screenshot({ encoding: 'base64', fullPage: false });
    } catch (e) {
      log('screenshot_failed', { message: String(e && e.message) });
      return null;
    }
  };

  const snapshot = async () => {
    try {
      return await page.evaluate((extraction) => {
        const clean = (t) => (t || '').replace(/[ \t\u00a0]+/g, ' ').replace(/\n\s*\n+/g, '\n').trim();
        const containers = [];
        for (const selector of extraction.container_selectors) {
          for (const el of Array.from(document.querySelectorAll(selector))) {
            if (containers.length >= extraction.max_containers) break;
            const cells = Array.from(el.querySelectorAll('td, th, dd, .value, span'))
              .slice(0, 20)
              .map((c) => clean(c.innerText || c.textContent));
            containers.push({ selector, text: clean(el.innerText || el.textContent), cells });
          }
        }
        const fields = {};
        for (const [name, selector] of Object.entries(extraction.field_selectors)) {
          const el = document.querySelector(selector);
          if (el) fields[name] = clean(el.value || el.innerText || el.textContent);
        }
        const states = [];
        for (const selector of extraction.state_selectors) {
          for (const el of Array.from(document.querySelectorAll(selector))) {
            if (el.textContent) states.push(el.textContent);
          }
        }
        for (const name of extraction.state_globals) {
          try {
            if (window[name]) states.push(JSON.stringify(window[name]));
          } catch (e) {
            // non-serializable global
          }
        }
        const body = document.body ? document.body.innerText : '';
        return {
          url: location.href,
          title: document.title,
          containers,
          fields,
          states,
          text: clean(body).slice(0, extraction.max_text_chars),
        };
      }, plan.extraction);
    } catch (e) {
      log('snapshot_failed', { message: String(e && e.message) });
      return null;
    }
  };

  const fail = async (code, message) => {
    log('error', { code, message });
    return { success: false, bills: [], error: message, error_code: code, debug, screenshot: await screenshot(), page: await snapshot() };
  };

  try {
    log('navigate', { url: plan.login_url });
    await page.goto(plan.login_url, nav);

    const banner = await first(plan.selectors.dismiss);
    if (banner) {
      log('dismiss', { selector: banner.selector });
      await banner.handle.click().catch(() => null);
      await sleep(500);
    }

    const user = await first(plan.selectors.username);
    if (!user) return await fail('LOGIN_FORM_NOT_FOUND', 'Username field not found on login page');
    log('enter_username', { selector: user.selector });
    await user.handle.type(String(credentials.username || ''), { delay: 20 });

    if (plan.two_step_login) {
      const next = await first(plan.selectors.next);
      if (next) {
        log('next', { selector: next.selector });
        await next.handle.click();
        await sleep(plan.settle_ms);
      }
    }

    const pass = await first(plan.selectors.password);
    if (!pass) return await fail('LOGIN_FORM_NOT_FOUND', 'Password field not found on login page');
    log('enter_password', { selector: pass.selector });
    await pass.handle.type(String(credentials.password || ''), { delay: 20 });

    const submit = await first(plan.selectors.submit);
    log('submit_login', { selector: submit ? submit.selector : 'enter' });
    await Promise.all([
      page.waitForNavigation(nav).catch(() => null),
      submit ? submit.handle.click() : pass.handle.press('Enter'),
    ]);
    await sleep(plan.settle_ms);

    const portalError = await first(plan.selectors.login_error);
    if (portalError) {
      const message = await textOf(portalError.handle);
      if (message) return await fail('LOGIN_FAILED', 'Login failed: ' + message.slice(0, 300));
    }

    if (plan.selectors.otp.length || plan.otp_markers.length) {
      const otpField = await first(plan.selectors.otp);
      const text = (await bodyText()).toLowerCase();
      const marker = plan.otp_markers.find((m) => text.includes(m.toLowerCase()));
      if (otpField || marker) {
        log('second_factor_detected', { selector: otpField ? otpField.selector : null, marker: marker || null });
        return await fail('2FA_REQUIRED', 'Portal requires a second authentication factor');
      }
    }

    const stillOnForm = await first(plan.selectors.password);
    if (stillOnForm) return await fail('LOGIN_FAILED', 'Login form still present after submit');
    log('logged_in', { url: page.url() });

    for (const url of plan.bills_urls) {
      log('navigate_bills', { url });
      await page.goto(url, nav);
    }
    await sleep(plan.settle_ms);

    log('snapshot');
    const pageSnapshot = await snapshot();
    return { success: true, bills: [], debug, screenshot: await screenshot(), page: pageSnapshot };
  } catch (error) {
    return await fail('SCRAPER_ERROR', String((error && error.message) || error));
  }
};
"""
