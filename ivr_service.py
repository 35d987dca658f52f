#!/usr/bin/env python3
"""Caller routing IVR — SignalWire SWML service.

Every SWML fetch carries one call event. The router decides the next
Directive and this module renders it as SWML verbs. Keypad and speech input
come back through the ``prompt`` verb, whose callback is a ``transfer`` to
this same route with the step to run in ``params.step``.
"""

import logging
import threading
from contextlib import contextmanager

from signalwire_agents.core.swml_service import SWMLService

import config
from errors import PersistenceError
from ivr_flow import StepRouter
from models import CallEvent, Hangup, Prompt, Redirect, Transfer
from state_store import CallStateStore, IdentityStore

logger = logging.getLogger(__name__)


# ── Per-call serialization ───────────────────────────────────────────

class CallLocks:
    """One lock per live call id. Entries are dropped once nobody holds them."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, call_id):
        with self._guard:
            entry = self._locks.setdefault(call_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if not entry[1]:
                    del self._locks[call_id]


# ── Request / Directive translation ──────────────────────────────────

def event_from_request(body):
    """Build a CallEvent from a SWML request body. None when no call id is present."""
    bp = body or {}
    call = bp.get("call") or {}
    call_id = call.get("call_id") or call.get("id")
    if not call_id:
        return None
    variables = bp.get("vars") or {}
    params = bp.get("params") or {}
    return CallEvent(
        call_id=call_id,
        caller_number=call.get("from") or call.get("from_number") or "",
        user_input=variables.get("prompt_value"),
        explicit_step=params.get("step"),
    )


def _say(text, directive):
    cfg = {"url": f"say:{text}"}
    if directive.voice:
        cfg["say_voice"] = directive.voice
    if directive.language_code:
        cfg["say_language"] = directive.language_code
    return ("play", cfg)


def _transfer(callback_url, step=None):
    cfg = {"dest": callback_url}
    if step is not None:
        cfg["params"] = {"step": step.value}
    return ("transfer", cfg)


def _as_block(verb):
    name, cfg = verb
    return {name: cfg}


def directive_to_verbs(directive, callback_url):
    """Render a Directive as an ordered list of (verb, config) pairs."""
    if isinstance(directive, Prompt):
        verbs = []
        if directive.preface:
            verbs.append(_say(directive.preface, directive))
        prompt = {"play": f"say:{directive.text}"}
        if directive.voice:
            prompt["say_voice"] = directive.voice
        if directive.language_code:
            prompt["say_language"] = directive.language_code
        if directive.gather.input_type == "speech":
            prompt["speech_timeout"] = 5
            prompt["speech_language"] = directive.language_code or "en-US"
        else:
            prompt["max_digits"] = directive.gather.max_digits
            prompt["terminators"] = "#"
        verbs.append(("prompt", prompt))
        no_input = [_transfer(callback_url, directive.fallback_step)]
        if directive.no_input_text:
            no_input.insert(0, _say(directive.no_input_text, directive))
        verbs.append(("switch", {
            "variable": "prompt_result",
            "case": {"no_input": [_as_block(v) for v in no_input]},
            "default": [_as_block(_transfer(callback_url, directive.callback_step))],
        }))
        return verbs

    if isinstance(directive, Redirect):
        verbs = []
        if directive.say:
            verbs.append(_say(directive.say, directive))
        verbs.append(_transfer(callback_url))
        return verbs

    if isinstance(directive, Transfer):
        verbs = []
        if directive.say:
            verbs.append(_say(directive.say, directive))
        verbs.append(("connect", {"to": directive.target, "from": directive.caller_id}))
        return verbs

    if isinstance(directive, Hangup):
        return [_say(directive.text, directive), ("hangup", {})]

    raise TypeError(f"not a directive: {directive!r}")


def respond(router, locks, body, callback_url):
    """Handle one SWML request body. Returns the verbs for the reply document.

    A session is evicted once its call is transferred. Sessions that ended in
    a hangup stay until TTL cleanup, so an exhausted call keeps hanging up.
    """
    event = event_from_request(body)
    if event is None:
        logger.warning("respond: request without call id — answering only")
        return [("answer", {})]

    if not event.explicit_step and event.user_input is None:
        try:
            router.sessions.cleanup_stale(config.CALL_STATE_TTL_HOURS)
        except PersistenceError as e:
            logger.error(f"respond: stale session cleanup skipped: {e}")

    with locks.hold(event.call_id):
        directive = router.handle(event)

    logger.info(f"respond: call_id={event.call_id} → {type(directive).__name__}")
    if isinstance(directive, Transfer):
        try:
            router.sessions.delete(event.call_id)
        except PersistenceError as e:
            logger.error(f"respond: call_id={event.call_id} session not evicted: {e}")
    return [("answer", {})] + directive_to_verbs(directive, callback_url)


# ── Service ──────────────────────────────────────────────────────────

class IvrService(SWMLService):
    """SWML endpoint that drives the caller routing flow."""

    def __init__(self, router, callback_url=None):
        basic_auth = None
        if config.SWML_BASIC_AUTH_USER and config.SWML_BASIC_AUTH_PASSWORD:
            basic_auth = (config.SWML_BASIC_AUTH_USER, config.SWML_BASIC_AUTH_PASSWORD)
        super().__init__(
            name="caller-routing-ivr",
            route=config.SWML_ROUTE,
            host=config.HOST,
            port=config.PORT,
            basic_auth=basic_auth,
        )
        self.router = router
        self.locks = CallLocks()
        self.callback_url = callback_url or f"{config.PUBLIC_BASE_URL}{config.SWML_ROUTE}"

    def on_request(self, request_data=None, callback_path=None):
        """Rebuild the SWML document for this call event."""
        self.reset_document()
        for verb, cfg in respond(self.router, self.locks, request_data, self.callback_url):
            self.add_verb(verb, cfg)
        return None


def build_service():
    sessions = CallStateStore(config.DB_PATH)
    identities = IdentityStore(config.DB_PATH)
    if config.IDENTITY_SEED_FILE:
        identities.load_seed(config.IDENTITY_SEED_FILE)
    router = StepRouter(sessions, identities)
    return IvrService(router)


def main():
    logging.basicConfig(level=logging.INFO, force=True)
    config.validate()
    service = build_service()
    logger.info(f"Serving caller routing IVR on {config.HOST}:{config.PORT}{config.SWML_ROUTE}")
    service.serve(host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
