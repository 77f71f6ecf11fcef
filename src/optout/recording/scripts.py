"""JavaScript installed into recorded pages.

The capture script reports each interaction through a Playwright binding
the moment it happens, so nothing is buffered in the page and nothing is
lost when the page navigates away. It never reads text input values.
"""

from __future__ import annotations

BINDING_NAME = "__optOuttaRecord"

CAPTURE_JS = r"""
(() => {
    if (window.__optOuttaRecorderInstalled) return;
    window.__optOuttaRecorderInstalled = true;

    function send(action) {
        if (typeof window.__optOuttaRecord !== 'function') return;
        action.timestamp = Date.now();
        window.__optOuttaPending = window.__optOuttaRecord(action).catch(() => {});
    }

    function cssSelector(el) {
        if (el.id) return '#' + CSS.escape(el.id);
        if (el.name && ['INPUT', 'SELECT', 'TEXTAREA'].includes(el.tagName)) {
            return el.tagName.toLowerCase() + '[name="' + CSS.escape(el.name) + '"]';
        }
        const path = [];
        while (el && el.nodeType === 1) {
            let selector = el.tagName.toLowerCase();
            if (el.id) { path.unshift('#' + CSS.escape(el.id)); break; }
            let sib = el, nth = 1;
            while ((sib = sib.previousElementSibling)) { if (sib.tagName === el.tagName) nth++; }
            if (nth > 1) selector += ':nth-of-type(' + nth + ')';
            path.unshift(selector);
            el = el.parentElement;
        }
        return path.join(' > ');
    }

    function getLabel(field) {
        if (field.id) {
            const label = document.querySelector('label[for="' + CSS.escape(field.id) + '"]');
            if (label) return label.textContent.trim();
        }
        const parent = field.closest('label');
        if (parent) return parent.textContent.trim();
        const prev = field.previousElementSibling;
        if (prev && prev.tagName === 'LABEL') return prev.textContent.trim();
        return field.getAttribute('aria-label') || null;
    }

    function inferProfileKey(field) {
        const hints = [
            field.name || '',
            field.id || '',
            field.placeholder || '',
            field.getAttribute('autocomplete') || '',
            getLabel(field) || ''
        ].join(' ').toLowerCase();

        if (/first.?name|given.?name|fname/.test(hints)) return 'firstName';
        if (/last.?name|family.?name|lname|surname/.test(hints)) return 'lastName';
        if (/full.?name|your.?name/.test(hints)) return 'fullName';
        if (/email/.test(hints)) return 'email';
        if (/phone|tel/.test(hints)) return 'phone';
        if (/street|address(?!.*city|.*state|.*zip)/.test(hints)) return 'address';
        if (/city/.test(hints)) return 'city';
        if (/state|province/.test(hints)) return 'state';
        if (/zip|postal/.test(hints)) return 'zip';
        if (/dob|birth/.test(hints)) return 'dob';
        return null;
    }

    // blur = the user finished with a field
    document.addEventListener('blur', (e) => {
        const el = e.target;
        if (!el || !['INPUT', 'SELECT', 'TEXTAREA'].includes(el.tagName)) return;
        if (el.type === 'hidden' || el.type === 'submit' || el.type === 'button') return;

        const selector = cssSelector(el);
        const label = getLabel(el);

        if (el.tagName === 'SELECT') {
            const profileKey = inferProfileKey(el);
            send({ action: 'select', selector, profile_key: profileKey,
                   value: profileKey ? null : el.value, label });
        } else if (el.type === 'checkbox' || el.type === 'radio') {
            send({ action: 'check', selector, value: el.checked ? 'true' : 'false', label });
        } else {
            send({ action: 'fill', selector, profile_key: inferProfileKey(el), label });
        }
    }, true);

    document.addEventListener('click', (e) => {
        const el = e.target.closest('button, a, input[type="submit"], [role="button"], .btn');
        if (!el) return;
        if (['INPUT', 'SELECT', 'TEXTAREA'].includes(el.tagName) && el.type !== 'submit') return;
        send({ action: 'click', selector: cssSelector(el),
               element_text: (el.textContent || el.value || '').trim() });
    }, true);
})();
"""

# Blur the focused field so a half-finished entry is captured, then wait for
# its report to reach the recorder.
FLUSH_JS = """
async () => {
    const el = document.activeElement;
    if (el && el !== document.body && typeof el.blur === 'function') el.blur();
    if (window.__optOuttaPending) await window.__optOuttaPending;
}
"""
