from __future__ import annotations

from css_injector.command_bridge import (
    ACTION_GET_CONFIG,
    ACTION_INJECT_BACKGROUND,
    ACTION_INJECT_CSS,
    ERR_CONFIG_UNAVAILABLE,
    ERR_NO_BACKGROUND,
    MSG_BACKGROUND_INJECTED,
    MSG_CSS_INJECTED,
    BridgeResult,
)
from css_injector.injector_config import CONFIG_ASSET_KEY
from css_injector.payload_builders import BACKGROUND_ELEMENT_ID, STYLESHEET_ELEMENT_ID

from conftest import DEFAULT_CONFIG


def _ready_injector(make_injector, scheduler):
    injector = make_injector()
    injector.initialize()
    scheduler.advance(100)
    return injector


def test_bridge_exposes_three_actions(make_injector) -> None:
    bridge = make_injector().bridge
    assert set(bridge.actions) == {ACTION_INJECT_CSS, ACTION_GET_CONFIG, ACTION_INJECT_BACKGROUND}


def test_inject_css_responds_then_injects_on_scheduler(make_injector, scheduler, surface) -> None:
    injector = _ready_injector(make_injector, scheduler)
    responses = []

    assert injector.bridge.execute(ACTION_INJECT_CSS, responses.append) is True
    assert responses == [BridgeResult.success(MSG_CSS_INJECTED)]
    assert STYLESHEET_ELEMENT_ID not in surface.page.elements

    scheduler.advance(0)
    assert surface.page.elements[STYLESHEET_ELEMENT_ID].startswith("body{")


def test_get_config_returns_merged_copy(make_injector, scheduler) -> None:
    injector = _ready_injector(make_injector, scheduler)
    responses = []

    injector.bridge.execute(ACTION_GET_CONFIG, responses.append)

    assert len(responses) == 1
    result = responses[0]
    assert result.ok is True
    assert result.payload == dict(DEFAULT_CONFIG, backgroundColor="#102030")
    result.payload["theme"]["accent"] = "#000000"
    assert injector.context.assets.bundle.config_object["theme"]["accent"] == "#00AA00"


def test_get_config_rereads_once_when_missing(make_injector, scheduler, store) -> None:
    raw = store.files.pop(CONFIG_ASSET_KEY)
    injector = make_injector()
    injector.initialize()
    store.files[CONFIG_ASSET_KEY] = raw
    responses = []

    injector.bridge.execute(ACTION_GET_CONFIG, responses.append)
    assert responses == []
    scheduler.advance(0)

    assert responses[0].ok is True
    assert responses[0].payload["apiBase"] == "https://api.example.test"
    assert store.read_count(CONFIG_ASSET_KEY) == 2


def test_get_config_fails_when_config_stays_missing(make_injector, scheduler, store) -> None:
    del store.files[CONFIG_ASSET_KEY]
    injector = _ready_injector(make_injector, scheduler)
    responses = []

    injector.bridge.execute(ACTION_GET_CONFIG, responses.append)
    scheduler.advance(0)
    injector.bridge.execute(ACTION_GET_CONFIG, responses.append)

    assert responses == [
        BridgeResult.failure(ERR_CONFIG_UNAVAILABLE),
        BridgeResult.failure(ERR_CONFIG_UNAVAILABLE),
    ]


def test_inject_background_uses_cached_color(make_injector, scheduler, surface) -> None:
    injector = _ready_injector(make_injector, scheduler)
    responses = []

    injector.bridge.execute(ACTION_INJECT_BACKGROUND, responses.append)
    scheduler.advance(0)

    assert responses == [BridgeResult.success(MSG_BACKGROUND_INJECTED)]
    assert "#102030" in surface.page.elements[BACKGROUND_ELEMENT_ID]


def test_inject_background_without_color_fails(make_injector) -> None:
    injector = make_injector()
    responses = []
    injector.bridge.execute(ACTION_INJECT_BACKGROUND, responses.append)
    assert responses == [BridgeResult.failure(ERR_NO_BACKGROUND)]


def test_unknown_action_is_not_handled(make_injector) -> None:
    responses = []
    assert make_injector().bridge.execute("reloadEverything", responses.append) is False
    assert responses == []
