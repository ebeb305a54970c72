"""Script and markup fragments that deliver the artifacts into the page.

Every fragment is safe to run any number of times: the config fragment only
reassigns globals (and announces readiness once per document), while the
stylesheet and background fragments look up their fixed element ids before
creating anything.
"""
from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from css_injector.asset_cache import AssetBundle
from css_injector.color_utils import InvalidColorError, css_color
from css_injector.logging_utils import LOGGER_NAME

CONFIG_GLOBALS: Tuple[str, ...] = ("CORDOVA_BUILD_CONFIG", "AppConfig")
CONFIG_READY_EVENT = "cordova-config-ready"
CONFIG_READY_FLAG = "__cssInjectorConfigReady"
STYLESHEET_ELEMENT_ID = "cdn-styles"
BACKGROUND_ELEMENT_ID = "cordova-bg"
BACKGROUND_SELECTORS = "html,body,#root,#app,.app-container,.screen,.page-wrapper,.layout"

KIND_CONFIG = "config"
KIND_STYLESHEET = "stylesheet"
KIND_BACKGROUND = "background"

# Backslash must go first so later replacements are not escaped twice.
_JS_STRING_ESCAPES: Tuple[Tuple[str, str], ...] = (
    ("\\", "\\\\"),
    ("'", "\\'"),
    ('"', '\\"'),
    ("\n", "\\n"),
    ("\r", "\\r"),
    ("\t", "\\t"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
    ("</", "<\\/"),
)

_HEAD_OPEN_RE = re.compile(r"<head(?=[\s>/])[^>]*>", re.IGNORECASE)
_HEAD_TARGET_JS = "document.head||document.getElementsByTagName('head')[0]||document.documentElement"

_LOGGER = logging.getLogger(LOGGER_NAME)


def escape_js_string(text: str) -> str:
    """Escape ``text`` for a single- or double-quoted JavaScript string literal."""

    escaped = text
    for needle, replacement in _JS_STRING_ESCAPES:
        escaped = escaped.replace(needle, replacement)
    return escaped


@dataclass(frozen=True)
class InjectionPayload:
    kind: str
    script: str
    element_id: Optional[str] = None
    fallback: bool = False

    @property
    def size(self) -> int:
        return len(self.script)


class PayloadBuilder:
    """Builds fragments from an ``AssetBundle``; every method is pure."""

    # Config ---------------------------------------------------------------

    def merged_config(self, bundle: AssetBundle) -> Optional[Dict[str, Any]]:
        config = bundle.config_copy()
        if config is None:
            return None
        if bundle.background_color is not None:
            config["backgroundColor"] = bundle.background_color
        return config

    def config_script(self, config: Mapping[str, Any]) -> str:
        serialized = json.dumps(config, ensure_ascii=False, separators=(",", ":"))
        escaped = escape_js_string(serialized)
        assignments = "".join(f"window.{name}=config;" for name in CONFIG_GLOBALS)
        return (
            "(function(){"
            "try{"
            'var config=JSON.parse("' + escaped + '");'
            + assignments
            + "console.log('[Native] Config injected');"
            "function ready(){"
            "if(window." + CONFIG_READY_FLAG + "||typeof CustomEvent==='undefined'){return;}"
            "window." + CONFIG_READY_FLAG + "=true;"
            "window.dispatchEvent(new CustomEvent('" + CONFIG_READY_EVENT + "',{detail:config}));"
            "}"
            "if(document.readyState==='loading'){document.addEventListener('DOMContentLoaded',ready);}"
            "else{ready();}"
            "}catch(e){console.error('[Native] Config failed:',e);}"
            "})();"
        )

    def build_config_payload(self, bundle: AssetBundle) -> Optional[InjectionPayload]:
        config = self.merged_config(bundle)
        if config is None:
            return None
        try:
            script = self.config_script(config)
        except (TypeError, ValueError) as exc:
            _LOGGER.warning("Config could not be serialised: %s", exc)
            return None
        return InjectionPayload(KIND_CONFIG, script)

    # Stylesheet -----------------------------------------------------------

    def _stylesheet_wrapper(self, css_expression: str, label: str) -> str:
        return (
            "(function(){"
            "function inject(){"
            "try{"
            "var t=" + _HEAD_TARGET_JS + ";"
            "if(!t){setTimeout(inject,50);return;}"
            "if(!document.getElementById('" + STYLESHEET_ELEMENT_ID + "')){"
            "var s=document.createElement('style');"
            "s.id='" + STYLESHEET_ELEMENT_ID + "';"
            "s.textContent=" + css_expression + ";"
            "t.appendChild(s);"
            "console.log('[Native] CDN CSS loaded (" + label + ")');"
            "}"
            "}catch(e){console.error('[Native] CDN failed:',e);}"
            "}"
            "inject();"
            "if(document.readyState==='loading'){document.addEventListener('DOMContentLoaded',inject);}"
            "})();"
        )

    def stylesheet_script(self, css: str) -> str:
        token = base64.b64encode(css.encode("utf-8")).decode("ascii")
        return self._stylesheet_wrapper("decodeURIComponent(escape(atob('" + token + "')))", "base64")

    def fallback_stylesheet_script(self, css: str) -> str:
        return self._stylesheet_wrapper("'" + escape_js_string(css) + "'", "text")

    def build_stylesheet_payload(self, bundle: AssetBundle) -> Optional[InjectionPayload]:
        css = bundle.stylesheet_text
        if not css:
            return None
        try:
            script = self.stylesheet_script(css)
        except UnicodeEncodeError as exc:
            _LOGGER.warning("Stylesheet base64 encoding failed; using escaped text (%s)", exc)
            return InjectionPayload(
                KIND_STYLESHEET,
                self.fallback_stylesheet_script(css),
                element_id=STYLESHEET_ELEMENT_ID,
                fallback=True,
            )
        return InjectionPayload(KIND_STYLESHEET, script, element_id=STYLESHEET_ELEMENT_ID)

    # Background -----------------------------------------------------------

    def background_css(self, color: str) -> str:
        value = css_color(color)
        return (
            BACKGROUND_SELECTORS + "{"
            f"background-color:{value}!important;"
            f"background:{value}!important;"
            "margin:0!important;padding:0!important;}"
        )

    def background_script(self, color: str) -> str:
        value = css_color(color)
        css = escape_js_string(self.background_css(color))
        return (
            "(function(){"
            "function apply(){"
            "try{"
            "var c='" + value + "';"
            "var nodes=[document.documentElement,document.body];"
            "for(var i=0;i<nodes.length;i++){"
            "if(nodes[i]){"
            "nodes[i].style.setProperty('background-color',c,'important');"
            "nodes[i].style.setProperty('background',c,'important');"
            "}"
            "}"
            "var t=" + _HEAD_TARGET_JS + ";"
            "if(!t){return;}"
            "var s=document.getElementById('" + BACKGROUND_ELEMENT_ID + "');"
            "if(!s){"
            "s=document.createElement('style');"
            "s.id='" + BACKGROUND_ELEMENT_ID + "';"
            "if(t.firstChild){t.insertBefore(s,t.firstChild);}else{t.appendChild(s);}"
            "}"
            "var css='" + css + "';"
            "if(s.textContent!==css){s.textContent=css;}"
            "}catch(e){console.error('[Native] BG failed:',e);}"
            "}"
            "apply();"
            "if(document.readyState==='loading'){document.addEventListener('DOMContentLoaded',apply);}"
            "})();"
        )

    def build_background_payload(self, color: Optional[str]) -> Optional[InjectionPayload]:
        if not color:
            return None
        try:
            script = self.background_script(color)
        except InvalidColorError as exc:
            _LOGGER.warning("Background fragment skipped: %s", exc)
            return None
        return InjectionPayload(KIND_BACKGROUND, script, element_id=BACKGROUND_ELEMENT_ID)

    # Markup ---------------------------------------------------------------

    def head_markup(self, bundle: AssetBundle) -> str:
        """``<script>``/``<style>`` block placed right after ``<head>``."""

        parts = []
        config = self.build_config_payload(bundle)
        if config is not None:
            parts.append(f"<script>{config.script}</script>")
        if bundle.background_color:
            try:
                css = self.background_css(bundle.background_color)
            except InvalidColorError as exc:
                _LOGGER.warning("Background markup skipped: %s", exc)
            else:
                parts.append(f'<style id="{BACKGROUND_ELEMENT_ID}">{css}</style>')
        stylesheet = self.build_stylesheet_payload(bundle)
        if stylesheet is not None:
            parts.append(f"<script>{stylesheet.script}</script>")
        return "".join(parts)

    def splice_head(self, document: str, markup: str) -> Optional[str]:
        """Insert ``markup`` after the first ``<head>`` tag.

        Returns None when there is no head tag, nothing to insert, or the
        document already carries the injected markup.
        """

        if not markup:
            return None
        if f'id="{BACKGROUND_ELEMENT_ID}"' in document or CONFIG_READY_FLAG in document:
            return None
        match = _HEAD_OPEN_RE.search(document)
        if match is None:
            return None
        end = match.end()
        return document[:end] + markup + document[end:]
