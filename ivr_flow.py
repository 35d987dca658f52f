"""Caller routing state machine.

All routing lives in code. Every inbound event is dispatched to exactly one
step handler, which validates input, mutates the session and returns one
Directive for the telephony side to render. The flow:

    [mini-miranda] → language-selection → csr-gate → [csr-notice] → ask-question
        general          → transfer-call
        account-specific → ask-ssn → ask-dob → ask-zip → verify-user → transfer-call

Two question-intake shapes share the same table: "speech" captures a free-text
question and runs it through a classifier, "keypad" asks for 1 or 2.
"""

import logging
from datetime import datetime, timezone
from enum import Enum

import config
from api_clients import get_classifier
from errors import (
    AttemptsExceededError, ExternalLookupError, IdentityNotFoundError,
    InputValidationError, MissingTemplateError, PersistenceError, UnknownStepError,
)
from messages import DEFAULT_LOCALE, LANGUAGE_DIGITS, message, resolve_locale, voice_for
from models import (
    ACCOUNT_SPECIFIC, GENERAL, IDENTITY_FIELDS, QUESTION_TYPES,
    GatherSpec, Hangup, Prompt, Redirect, Step, Transfer,
)
from validators import csr_available, digits_only, valid_dob, valid_ssn_last4, valid_zip

logger = logging.getLogger(__name__)

FLOW_SPEECH = "speech"
FLOW_KEYPAD = "keypad"

QUESTION_DIGITS = {"1": GENERAL, "2": ACCOUNT_SPECIFIC}


# ── Attempt Guard ────────────────────────────────────────────────────

class GuardResult(Enum):
    RETRY = "retry"
    EXCEEDED = "exceeded"


class AttemptGuard:
    """Per-field retry counters with a hard cap.

    ``max_verify_cycles`` caps failed verification cycles; 0 leaves the
    outer loop uncapped.
    """

    def __init__(self, max_attempts=None, max_verify_cycles=None):
        self.max_attempts = config.MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.max_verify_cycles = (
            config.MAX_VERIFY_CYCLES if max_verify_cycles is None else max_verify_cycles
        )

    def record(self, session, field):
        session.attempts[field] = session.attempts.get(field, 0) + 1
        if session.attempts[field] >= self.max_attempts:
            return GuardResult.EXCEEDED
        return GuardResult.RETRY

    def reset(self, session, fields):
        for name in fields:
            session.attempts[name] = 0

    def exhausted(self, session):
        if any(count >= self.max_attempts for count in session.attempts.values()):
            return True
        return bool(self.max_verify_cycles) and session.verify_cycles >= self.max_verify_cycles


# ── Identity / Routing ───────────────────────────────────────────────

def verify_identity(store, ssn_last4, dob, zip, phone_number=None):
    """Find the enrolled record for the trio and link the caller's number.

    Linking is best-effort: a write failure is logged and the match stands.
    """
    record = store.find(ssn_last4, dob, zip)
    if record is None:
        return None
    if phone_number:
        try:
            store.link_phone_number(record, phone_number)
        except PersistenceError as e:
            logger.error(f"verify_identity: could not link phone number: {e}")
    return record


def route_call(session, target, service_number):
    """Return (target, caller_id) for the outbound transfer."""
    if session.question_type == ACCOUNT_SPECIFIC and session.phone_number:
        return target, session.phone_number
    return target, service_number


# ── Step Router ──────────────────────────────────────────────────────

class StepRouter:
    """Dispatch inbound call events to step handlers."""

    def __init__(self, sessions, identities, classifier=None, flow=None,
                 mini_miranda=None, target_number=None, service_number=None,
                 guard=None, csr_cutoff_hour=None, csr_timezone=None, clock=None):
        self.sessions = sessions
        self.identities = identities
        self.flow = (flow or config.IVR_FLOW).lower()
        if self.flow not in (FLOW_SPEECH, FLOW_KEYPAD):
            raise ValueError(f"unknown IVR flow {self.flow!r}")
        self.classifier = classifier or get_classifier()
        self.mini_miranda = config.MINI_MIRANDA if mini_miranda is None else mini_miranda
        self.target_number = target_number or config.TARGET_NUMBER
        self.service_number = service_number or config.SERVICE_NUMBER
        self.guard = guard or AttemptGuard()
        self.csr_cutoff_hour = config.CSR_CUTOFF_HOUR if csr_cutoff_hour is None else csr_cutoff_hour
        self.csr_timezone = csr_timezone or config.CSR_TIMEZONE
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.handlers = self._build_table()

    @property
    def entry_step(self):
        return Step.MINI_MIRANDA if self.mini_miranda else Step.LANGUAGE_SELECTION

    def _build_table(self):
        table = {
            Step.LANGUAGE_SELECTION: self._language_selection,
            Step.PROCESS_LANGUAGE: self._process_language,
            Step.CSR_GATE: self._csr_gate,
            Step.CSR_NOTICE: self._csr_notice,
            Step.ASK_SSN: self._ask_ssn,
            Step.PROCESS_SSN: self._process_ssn,
            Step.ASK_DOB: self._ask_dob,
            Step.PROCESS_DOB: self._process_dob,
            Step.ASK_ZIP: self._ask_zip,
            Step.PROCESS_ZIP: self._process_zip,
            Step.VERIFY_USER: self._verify_user,
            Step.TRANSFER_CALL: self._transfer_call,
        }
        if self.mini_miranda:
            table[Step.MINI_MIRANDA] = self._mini_miranda
        if self.flow == FLOW_SPEECH:
            table[Step.ASK_QUESTION] = self._ask_spoken_question
            table[Step.PROCESS_QUESTION] = self._process_spoken_question
            table[Step.CLASSIFY_QUESTION] = self._classify_question
        else:
            table[Step.ASK_QUESTION] = self._ask_question_menu
            table[Step.PROCESS_QUESTION] = self._process_question_choice
        return table

    # ── Dispatch ─────────────────────────────────────────────────────

    def handle(self, event):
        """Run one inbound event through its step and return the Directive.

        The session is saved only when the handler completes, so a failed
        lookup leaves the stored session where it was. A session store that
        cannot be read or written ends the call with the system error.
        """
        session = None
        try:
            session = self.sessions.get_or_create(event.call_id, event.caller_number,
                                                  entry_step=self.entry_step)
            if self.guard.exhausted(session):
                logger.info(f"handle: call_id={event.call_id} attempts exhausted → hangup")
                return self._hangup(resolve_locale(session), "too_many_attempts")

            step = self._resolve_step(session, event)
            handler = self.handlers.get(step)
            if handler is None:
                raise UnknownStepError(step.value)

            logger.info(f"handle: call_id={event.call_id} step={step.value}")
            try:
                directive = handler(session, event)
            except AttemptsExceededError as e:
                logger.info(f"handle: call_id={event.call_id} {e} → hangup")
                directive = self._hangup(resolve_locale(session), "too_many_attempts")
            self.sessions.save(session)
            return directive
        except (UnknownStepError, MissingTemplateError, ExternalLookupError) as e:
            logger.error(f"handle: call_id={event.call_id} system error: {e}")
            return self._system_error(resolve_locale(session) if session else DEFAULT_LOCALE)

    def _resolve_step(self, session, event):
        raw = event.explicit_step or session.current_step
        try:
            return Step(raw)
        except ValueError:
            raise UnknownStepError(raw) from None

    # ── Directive helpers ────────────────────────────────────────────

    def _voice(self, locale):
        language_code, voice = voice_for(locale)
        return {"locale": locale, "language_code": language_code, "voice": voice}

    def _hangup(self, locale, key):
        return Hangup(text=message(locale, key), **self._voice(locale))

    def _system_error(self, locale):
        try:
            return self._hangup(locale, "system_error")
        except MissingTemplateError:
            return self._hangup(DEFAULT_LOCALE, "system_error")

    def _redirect(self, session, next_step, say=None):
        session.current_step = next_step
        return Redirect(next_step=next_step, say=say, **self._voice(resolve_locale(session)))

    def _prompt(self, session, step, key, gather, callback, preface=None):
        locale = resolve_locale(session)
        session.current_step = step
        return Prompt(
            text=message(locale, key),
            gather=gather,
            callback_step=callback,
            fallback_step=step,
            no_input_text=message(locale, "no_input"),
            preface=preface,
            **self._voice(locale),
        )

    def _retry(self, session, event, error, ask_step, invalid_key):
        """Count a failed entry and re-ask. Raises AttemptsExceededError at the cap."""
        locale = resolve_locale(session)
        field = error.field
        if self.guard.record(session, field) is GuardResult.EXCEEDED:
            raise AttemptsExceededError(field, session.attempts[field])
        logger.info(f"retry: call_id={session.call_id} {field} attempt "
                    f"{session.attempts[field]} → {ask_step.value}")
        return self.handlers[ask_step](session, event, preface=message(locale, invalid_key))

    # ── Greeting / Language ──────────────────────────────────────────

    def _mini_miranda(self, session, event):
        # Always English; language is not chosen yet
        return self._redirect(session, Step.LANGUAGE_SELECTION,
                              say=message(DEFAULT_LOCALE, "mini_miranda"))

    def _language_selection(self, session, event, preface=None):
        return self._prompt(session, Step.LANGUAGE_SELECTION, "language_prompt",
                            GatherSpec("dtmf", 1), Step.PROCESS_LANGUAGE, preface)

    def _process_language(self, session, event):
        if session.language:
            return self._redirect(session, Step.CSR_GATE)

        locale = LANGUAGE_DIGITS.get(digits_only(event.user_input))
        if locale is None:
            return self._retry(session, event, InputValidationError("language"),
                               Step.LANGUAGE_SELECTION, "invalid_language")

        session.language = locale
        logger.info(f"process_language: call_id={session.call_id} language={locale} → csr-gate")
        return self._redirect(session, Step.CSR_GATE)

    # ── CSR availability ─────────────────────────────────────────────

    def _csr_gate(self, session, event):
        if csr_available(self.clock(), self.csr_cutoff_hour, self.csr_timezone):
            logger.info(f"csr_gate: call_id={session.call_id} available → ask-question")
            return self._redirect(session, Step.ASK_QUESTION)
        logger.info(f"csr_gate: call_id={session.call_id} after hours → csr-notice")
        return self._redirect(session, Step.CSR_NOTICE)

    def _csr_notice(self, session, event):
        return self._redirect(session, Step.ASK_QUESTION,
                              say=message(resolve_locale(session), "csr_notice"))

    # ── Question intake ──────────────────────────────────────────────

    def _ask_spoken_question(self, session, event, preface=None):
        return self._prompt(session, Step.ASK_QUESTION, "question_prompt",
                            GatherSpec("speech"), Step.PROCESS_QUESTION, preface)

    def _process_spoken_question(self, session, event):
        question = (event.user_input or "").strip()
        if not question:
            return self._retry(session, event, InputValidationError("question"),
                               Step.ASK_QUESTION, "no_input")
        session.question = question
        return self._redirect(session, Step.CLASSIFY_QUESTION)

    def _classify_question(self, session, event):
        label = self.classifier(session.question or "")
        if label not in QUESTION_TYPES:
            raise ExternalLookupError(f"classifier returned unknown label {label!r}")
        logger.info(f"classify_question: call_id={session.call_id} → {label}")
        return self._branch(session, event, label)

    def _ask_question_menu(self, session, event, preface=None):
        return self._prompt(session, Step.ASK_QUESTION, "question_menu",
                            GatherSpec("dtmf", 1), Step.PROCESS_QUESTION, preface)

    def _process_question_choice(self, session, event):
        label = QUESTION_DIGITS.get(digits_only(event.user_input))
        if label is None:
            return self._retry(session, event, InputValidationError("question"),
                               Step.ASK_QUESTION, "invalid_question")
        logger.info(f"process_question: call_id={session.call_id} → {label}")
        return self._branch(session, event, label)

    def _branch(self, session, event, label):
        session.question_type = label
        if label == ACCOUNT_SPECIFIC:
            if event.caller_number:
                session.phone_number = event.caller_number
            return self._redirect(session, Step.ASK_SSN)
        return self._redirect(session, Step.TRANSFER_CALL)

    # ── Identity collection ──────────────────────────────────────────

    def _ask_ssn(self, session, event, preface=None):
        return self._prompt(session, Step.ASK_SSN, "ssn_prompt",
                            GatherSpec("dtmf", 4), Step.PROCESS_SSN, preface)

    def _ask_dob(self, session, event, preface=None):
        return self._prompt(session, Step.ASK_DOB, "dob_prompt",
                            GatherSpec("dtmf", 8), Step.PROCESS_DOB, preface)

    def _ask_zip(self, session, event, preface=None):
        return self._prompt(session, Step.ASK_ZIP, "zip_prompt",
                            GatherSpec("dtmf", 5), Step.PROCESS_ZIP, preface)

    def _process_ssn(self, session, event):
        return self._accept_field(session, event, "ssn_last4", valid_ssn_last4,
                                  Step.ASK_SSN, Step.ASK_DOB, "invalid_ssn")

    def _process_dob(self, session, event):
        return self._accept_field(session, event, "dob",
                                  lambda raw: valid_dob(raw, self.clock(), self.csr_timezone),
                                  Step.ASK_DOB, Step.ASK_ZIP, "invalid_dob")

    def _process_zip(self, session, event):
        return self._accept_field(session, event, "zip", valid_zip,
                                  Step.ASK_ZIP, Step.VERIFY_USER, "invalid_zip")

    def _accept_field(self, session, event, field, validator, ask_step, next_step, invalid_key):
        if getattr(session, field):
            # Accepted fields stay fixed until a verification reset
            return self._redirect(session, next_step)
        if not validator(event.user_input):
            return self._retry(session, event, InputValidationError(field), ask_step, invalid_key)
        setattr(session, field, digits_only(event.user_input))
        logger.info(f"process_{field}: call_id={session.call_id} valid → {next_step.value}")
        return self._redirect(session, next_step)

    # ── Verification / Transfer ──────────────────────────────────────

    def _lookup(self, session):
        record = verify_identity(self.identities, session.ssn_last4, session.dob,
                                 session.zip, session.phone_number)
        if record is None:
            raise IdentityNotFoundError(f"no record for call_id={session.call_id}")
        return record

    def _verify_user(self, session, event):
        locale = resolve_locale(session)
        for field, ask_step in zip(IDENTITY_FIELDS, (Step.ASK_SSN, Step.ASK_DOB, Step.ASK_ZIP)):
            if not getattr(session, field):
                logger.warning(f"verify_user: call_id={session.call_id} missing {field} → {ask_step.value}")
                return self._redirect(session, ask_step)

        try:
            record = self._lookup(session)
        except IdentityNotFoundError:
            return self._verification_failed(session)

        logger.info(f"verify_user: call_id={session.call_id} verified → transfer-call")
        return self._redirect(session, Step.TRANSFER_CALL,
                              say=message(locale, "verification_success", name=record.name))

    def _verification_failed(self, session):
        locale = resolve_locale(session)
        session.verify_cycles += 1
        for field in IDENTITY_FIELDS:
            setattr(session, field, None)
        self.guard.reset(session, IDENTITY_FIELDS)

        session.current_step = Step.ASK_SSN
        if self.guard.exhausted(session):
            raise AttemptsExceededError("verify_cycles", session.verify_cycles)

        logger.info(f"verify_user: call_id={session.call_id} cycle "
                    f"{session.verify_cycles} failed → ask-ssn")
        return self._redirect(session, Step.ASK_SSN,
                              say=message(locale, "verification_failed"))

    def _transfer_call(self, session, event):
        target, caller_id = route_call(session, self.target_number, self.service_number)
        logger.info(f"transfer_call: call_id={session.call_id} type={session.question_type} "
                    f"from={caller_id}")
        session.current_step = Step.TRANSFER_CALL
        return Transfer(
            target=target,
            caller_id=caller_id,
            say=message(resolve_locale(session), "transferring"),
            **self._voice(resolve_locale(session)),
        )
