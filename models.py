"""Data types shared by the IVR core, the stores and the SWML adapter."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Optional


class Step(str, Enum):
    MINI_MIRANDA = "mini-miranda"
    LANGUAGE_SELECTION = "language-selection"
    PROCESS_LANGUAGE = "process-language"
    CSR_GATE = "csr-gate"
    CSR_NOTICE = "csr-notice"
    ASK_QUESTION = "ask-question"
    PROCESS_QUESTION = "process-question"
    CLASSIFY_QUESTION = "classify-question"
    ASK_SSN = "ask-ssn"
    PROCESS_SSN = "process-ssn"
    ASK_DOB = "ask-dob"
    PROCESS_DOB = "process-dob"
    ASK_ZIP = "ask-zip"
    PROCESS_ZIP = "process-zip"
    VERIFY_USER = "verify-user"
    TRANSFER_CALL = "transfer-call"


GENERAL = "general"
ACCOUNT_SPECIFIC = "account-specific"
QUESTION_TYPES = (GENERAL, ACCOUNT_SPECIFIC)

# Counters tracked per session, keyed by field
ATTEMPT_FIELDS = ("language", "question", "ssn_last4", "dob", "zip")
IDENTITY_FIELDS = ("ssn_last4", "dob", "zip")


def _fresh_attempts():
    return {name: 0 for name in ATTEMPT_FIELDS}


@dataclass
class Session:
    """Progress of one call through the step graph."""

    call_id: str
    current_step: Step = Step.MINI_MIRANDA
    language: Optional[str] = None
    question: Optional[str] = None
    question_type: Optional[str] = None
    ssn_last4: Optional[str] = None
    dob: Optional[str] = None
    zip: Optional[str] = None
    phone_number: Optional[str] = None
    attempts: Dict[str, int] = field(default_factory=_fresh_attempts)
    verify_cycles: int = 0

    def to_dict(self):
        data = asdict(self)
        data["current_step"] = self.current_step.value
        return data

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        data["current_step"] = Step(data.get("current_step", Step.MINI_MIRANDA.value))
        data["attempts"] = {**_fresh_attempts(), **(data.get("attempts") or {})}
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class IdentityRecord:
    """One enrolled customer. Keyed by (ssn_last4, dob, zip)."""

    ssn_last4: str
    dob: str
    zip: str
    name: str
    phone_number: Optional[str] = None

    @property
    def key(self):
        return (self.ssn_last4, self.dob, self.zip)


@dataclass
class CallEvent:
    """One inbound event from the telephony side."""

    call_id: str
    caller_number: str = ""
    user_input: Optional[str] = None
    explicit_step: Optional[str] = None


# ── Directives ───────────────────────────────────────────────────────

@dataclass
class GatherSpec:
    input_type: str = "dtmf"  # "dtmf" or "speech"
    max_digits: Optional[int] = None


@dataclass
class Prompt:
    text: str
    locale: str
    gather: GatherSpec
    callback_step: Step
    fallback_step: Step
    voice: Optional[str] = None
    language_code: Optional[str] = None
    no_input_text: Optional[str] = None
    preface: Optional[str] = None


@dataclass
class Redirect:
    next_step: Step
    say: Optional[str] = None
    locale: Optional[str] = None
    voice: Optional[str] = None
    language_code: Optional[str] = None


@dataclass
class Transfer:
    target: str
    caller_id: str
    say: Optional[str] = None
    locale: Optional[str] = None
    voice: Optional[str] = None
    language_code: Optional[str] = None


@dataclass
class Hangup:
    text: str
    locale: Optional[str] = None
    voice: Optional[str] = None
    language_code: Optional[str] = None
