"""command_dispatch.py
Turns a resolved Intent into its side effects: the spoken reply, and for
link-type intents a browser tab opened shortly after speech has started.
"""
from __future__ import annotations

import webbrowser
from typing import Callable, Dict, Optional
from urllib.parse import quote

import config
from intents import Intent, IntentType


def _fixed(url: str) -> Callable[[str], str]:
    return lambda query: url


def _with_query(template: str) -> Callable[[str], str]:
    return lambda query: template.format(q=query)


# One entry per intent type. None means the intent is speech only.
LINKS: Dict[IntentType, Optional[Callable[[str], str]]] = {
    IntentType.CHAT: None,
    IntentType.WEB_SEARCH: _with_query("https://www.google.com/search?q={q}"),
    IntentType.MEDIA_SEARCH: _with_query("https://www.youtube.com/results?search_query={q}"),
    IntentType.MEDIA_PLAY: _with_query("https://www.youtube.com/results?search_query={q}"),
    IntentType.GET_TIME: None,
    IntentType.GET_DATE: None,
    IntentType.GET_DAY: None,
    IntentType.GET_MONTH: None,
    IntentType.CALCULATOR_OPEN: _fixed("https://www.google.com/search?q=calculator"),
    IntentType.INSTAGRAM_OPEN: _fixed("https://www.instagram.com/"),
    IntentType.FACEBOOK_OPEN: _fixed("https://www.facebook.com/"),
    IntentType.WEATHER_SHOW: _fixed("https://www.google.com/search?q=weather"),
    IntentType.NEWS_SHOW: None,
    IntentType.JOKE: None,
    IntentType.QUOTE: None,
    IntentType.WIKIPEDIA_SEARCH: _with_query("https://en.wikipedia.org/wiki/Special:Search?search={q}"),
    IntentType.WHATSAPP_OPEN: _fixed("https://web.whatsapp.com/"),
    IntentType.MAPS_OPEN: _with_query("https://www.google.com/maps/search/{q}"),
    IntentType.DEFINE: None,
    IntentType.SUMMARIZE: None,
    IntentType.TRANSLATE: None,
    IntentType.ERROR: None,
    IntentType.CLARIFY: None,
}

_missing = set(IntentType) - set(LINKS)
if _missing:
    raise RuntimeError(f"No link entry for intent types: {sorted(t.value for t in _missing)}")


def link_for(intent: Intent) -> Optional[str]:
    """Returns the URL to open for intent, or None."""
    build = LINKS[intent.type]
    if build is None:
        return None
    return build(quote(intent.user_input, safe=""))


class CommandDispatcher:
    def __init__(self, speak: Callable[[str], None], scheduler,
                 open_url: Callable[[str], object] = webbrowser.open_new_tab,
                 link_delay: float = config.LINK_OPEN_DELAY_SEC):
        self._speak = speak
        self._scheduler = scheduler
        self._open_url = open_url
        self._link_delay = link_delay
        self._pending_link = None

    def dispatch(self, intent: Intent) -> None:
        """Speaks the reply and schedules the intent's link, if it has one. Never raises."""
        # A newer reply supersedes a link that has not opened yet.
        if self._pending_link is not None:
            self._pending_link.cancel()
            self._pending_link = None

        try:
            self._speak(intent.response)
        except Exception as e:
            print(f"Error starting speech for {intent.type.value}: {e}")

        try:
            url = link_for(intent)
        except Exception as e:
            print(f"Could not build link for {intent.type.value}: {e}")
            return
        if url:
            self._pending_link = self._scheduler.call_later(self._link_delay, lambda: self._open(url))

    def _open(self, url: str) -> None:
        self._pending_link = None
        print(f"🌐 Opening {url}")
        try:
            self._open_url(url)
        except Exception as e:
            print(f"Could not open {url}: {e}")
