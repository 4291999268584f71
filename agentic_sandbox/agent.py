"""Document agent: the instrumentation every context runs before its own page code.

`inject_agent` rewrites raw fixture markup so that it carries the agent script. The
browser host refuses markup without it; once mounted, the script runs inside the page,
reports interactions to the controller and executes controller commands.
"""

from __future__ import annotations

import re

AGENT_SCRIPT_VERSION = "1"
AGENT_SCRIPT_ATTR = "data-agentic-agent"

_AGENT_TAG_RE = re.compile(r"<script\b[^>]*\b" + re.escape(AGENT_SCRIPT_ATTR) + r"\b", re.IGNORECASE)


# NOTE: Self-contained and idempotent; a second copy in the same document is a no-op.
# It talks to the controller only through `parent.postMessage` and answers `assertText`
# on the transferred reply port when one is present. Ready is announced after
# DOMContentLoaded, after load and once more from a 200ms fallback timer.
AGENT_SCRIPT_SOURCE = r"""
(function(){
  const VERSION = "1";
  if (window.__agenticAgent === VERSION) return;
  window.__agenticAgent = VERSION;

  function send(event, payload){
    try { parent.postMessage({ type:'agentic:event', event, payload }, '*'); } catch {}
  }
  function announceReady(){ send('ready'); }

  if (document.readyState === 'loading') {
    document.addEventListener('DOMContentLoaded', () => setTimeout(announceReady, 0), { once: true });
  } else {
    setTimeout(announceReady, 0);
  }
  window.addEventListener('load', () => setTimeout(announceReady, 0), { once: true });
  setTimeout(announceReady, 200);

  document.addEventListener('click', (e) => {
    const t = e.target;
    send('click', { tag: t?.tagName, id: t?.id || '', text: (t?.innerText || '').slice(0,60) });
  }, true);

  document.addEventListener('submit', (e) => {
    const fd = new FormData(e.target); const obj = {};
    fd.forEach((v,k) => obj[k] = String(v));
    send('form_submit', obj);
  }, true);

  window.addEventListener('message', (ev) => {
    const msg = ev.data || {};
    if (msg.type !== 'agentic:command') return;
    const { command, args } = msg;
    send('command_received', { command, args });

    if (command === 'ping') { send('pong', {}); return; }

    if (command === 'fill') {
      try {
        Object.entries(args || {}).forEach(([sel, val]) => {
          const el = document.querySelector(sel);
          if (el && 'value' in el) { el.value = String(val); el.dispatchEvent(new Event('input', { bubbles: true })); }
        });
        send('autofilled', { fields: Object.keys(args || {}) });
      } catch (e) { send('error', { what:'fill', message:String(e) }); }
    }

    if (command === 'click') {
      try {
        const el = document.querySelector(args?.selector);
        if (el && el instanceof HTMLElement) { el.click(); send('clicked', { selector: args.selector }); }
        else { send('error', { what:'click', message:'selector not found' }); }
      } catch (e) { send('error', { what:'click', message:String(e) }); }
    }

    if (command === 'assertText') {
      try {
        const el = document.querySelector(args?.selector);
        const ok = !!el && (el.textContent || '').includes(args?.includes || '');
        if (ev.ports && ev.ports[0]) { ev.ports[0].postMessage({ ok }); }
        send('assert_result', { selector: args?.selector, includes: args?.includes, ok });
      } catch (e) { send('error', { what:'assertText', message:String(e) }); }
    }
  });
})();
"""


def agent_script_tag() -> str:
    return f'<script {AGENT_SCRIPT_ATTR}="{AGENT_SCRIPT_VERSION}">{AGENT_SCRIPT_SOURCE}</script>'


def inject_agent(raw_markup: str) -> str:
    """Instrument raw fixture markup with the agent script.

    The tag goes right before the first ``</body>``; markup without one gets it appended.
    """
    raw = raw_markup or ""
    tag = agent_script_tag()
    if "</body>" in raw:
        return raw.replace("</body>", f"{tag}</body>", 1)
    return f"{raw}{tag}"


def has_agent_script(markup: str) -> bool:
    return bool(_AGENT_TAG_RE.search(markup or ""))
