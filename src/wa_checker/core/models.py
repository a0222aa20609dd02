#!/usr/bin/env python3
"""
Core models and result schemas for WA Checker.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Literal, Optional, Set

from wa_checker.config import DEFAULT_SETTINGS
from wa_checker.core.errors import InvalidTransitionError
from wa_checker.utils import mask_api_key

Outcome = Literal["active", "not_present", "api_error", "pending"]
SessionStatus = Literal["pending", "running", "completed", "cancelled", "error"]

ACTIVE: Outcome = "active"
NOT_PRESENT: Outcome = "not_present"
API_ERROR: Outcome = "api_error"
PENDING: Outcome = "pending"

TERMINAL_OUTCOMES = (ACTIVE, NOT_PRESENT, API_ERROR)

# Allowed session status changes. completed and error are terminal.
SESSION_TRANSITIONS: Dict[str, Set[str]] = {
    "pending": {"running", "cancelled", "error"},
    "running": {"completed", "cancelled", "error"},
    "cancelled": {"running"},
    "completed": set(),
    "error": set(),
}
RESUMABLE_STATUSES = ("pending", "cancelled")


@dataclass(frozen=True)
class PhoneNumberRecord:
    original: str
    canonical: str
    is_valid: bool
    region: Optional[str] = None
    country_code: Optional[str] = None
    validation_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhoneNumberRecord":
        return cls(
            original=data.get("original", ""),
            canonical=data.get("canonical", ""),
            is_valid=bool(data.get("is_valid", False)),
            region=data.get("region"),
            country_code=data.get("country_code"),
            validation_error=data.get("validation_error"),
        )


@dataclass(frozen=True)
class RateLimitInfo:
    """Quota snapshot reported alongside each lookup."""

    remaining: int
    limit: int
    reset: int
    used: int = 0
    monthly_remaining: Optional[int] = None
    monthly_limit: Optional[int] = None
    monthly_reset: Optional[int] = None
    monthly_used: Optional[int] = None

    def __post_init__(self):
        limit = max(0, int(self.limit))
        object.__setattr__(self, "limit", limit)
        object.__setattr__(self, "remaining", max(0, min(int(self.remaining), limit)))
        object.__setattr__(self, "reset", int(self.reset))
        object.__setattr__(self, "used", max(0, int(self.used)))

    def is_exhausted(self, threshold: int = 0) -> bool:
        return self.remaining <= threshold

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["RateLimitInfo"]:
        if not data:
            return None
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class LookupResponse:
    """Raw answer of a single lookup call, before classification."""

    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    rate_limit: Optional[RateLimitInfo] = None
    status_code: Optional[int] = None


@dataclass(frozen=True)
class LookupResult:
    number: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    rate_limit: Optional[RateLimitInfo] = None
    checked_at: Optional[float] = None
    attempts: int = 0

    @property
    def outcome(self) -> Outcome:
        # Import here to avoid circular imports
        from wa_checker.core.adapters import categorize
        return categorize(self)

    @property
    def is_terminal(self) -> bool:
        return self.outcome != PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "data": self.data,
            "error": self.error,
            "error_code": self.error_code,
            "rate_limit": self.rate_limit.to_dict() if self.rate_limit else None,
            "checked_at": self.checked_at,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LookupResult":
        return cls(
            number=data.get("number", ""),
            data=data.get("data"),
            error=data.get("error"),
            error_code=data.get("error_code"),
            rate_limit=RateLimitInfo.from_dict(data.get("rate_limit")),
            checked_at=data.get("checked_at"),
            attempts=int(data.get("attempts") or 0),
        )


@dataclass
class CheckSettings:
    """Run configuration; copied into each session when a run starts."""

    api_key: str = DEFAULT_SETTINGS["api_key"]
    max_retries: int = DEFAULT_SETTINGS["max_retries"]
    retry_delay: float = DEFAULT_SETTINGS["retry_delay"]
    retry_backoff: str = DEFAULT_SETTINGS["retry_backoff"]
    timeout: float = DEFAULT_SETTINGS["timeout"]
    throw_on_limit: bool = DEFAULT_SETTINGS["throw_on_limit"]
    concurrent_requests: int = DEFAULT_SETTINGS["concurrent_requests"]
    stop_on_error: bool = DEFAULT_SETTINGS["stop_on_error"]
    rate_limit_threshold: int = DEFAULT_SETTINGS["rate_limit_threshold"]
    base_url: str = DEFAULT_SETTINGS["base_url"]
    api_host: str = DEFAULT_SETTINGS["api_host"]
    save_results: bool = DEFAULT_SETTINGS["save_results"]
    auto_export: bool = DEFAULT_SETTINGS["auto_export"]
    default_export_format: str = DEFAULT_SETTINGS["default_export_format"]

    def copy(self, **changes) -> "CheckSettings":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CheckSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class ProgressEvent:
    completed: int
    total: int
    successful: int
    failed: int
    rate_limited: int = 0
    # Number whose lookup is still running when the event is emitted, if any
    current_number: Optional[str] = None
    # Result that triggered this event
    current_result: Optional[LookupResult] = None
    rate_limit: Optional[RateLimitInfo] = None

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.completed / self.total * 100


@dataclass
class CompletionEvent:
    session: "Session"


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class Session:
    id: str
    original_numbers: List[PhoneNumberRecord]
    settings: CheckSettings
    status: SessionStatus = "pending"
    results: List[LookupResult] = field(default_factory=list)
    file_name: str = "Current Session"
    total_numbers: int = 0
    completed_numbers: int = 0
    successful_checks: int = 0
    failed_checks: int = 0
    not_present_checks: int = 0
    api_error_checks: int = 0
    rate_limited_checks: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    paused_at: Optional[float] = None
    last_resumed_at: Optional[float] = None
    is_starred: bool = False
    error_message: Optional[str] = None

    def __post_init__(self):
        if not self.total_numbers:
            self.total_numbers = len(self.original_numbers)

    @classmethod
    def create(cls, records: List[PhoneNumberRecord], settings: CheckSettings,
               file_name: str = "Current Session") -> "Session":
        return cls(id=new_session_id(), original_numbers=list(records),
                   settings=settings.copy(), file_name=file_name)

    # --- State machine ---
    def can_transition(self, target: str) -> bool:
        return target in SESSION_TRANSITIONS.get(self.status, set())

    def transition(self, target: SessionStatus) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(self.status, target)
        self.status = target

    @property
    def is_resumable(self) -> bool:
        return self.status in RESUMABLE_STATUSES

    # --- Results ---
    def record_result(self, result: LookupResult) -> None:
        """Store a result, replacing any earlier entry for the same number."""
        for i, existing in enumerate(self.results):
            if existing.number == result.number:
                self.results[i] = result
                break
        else:
            if len(self.results) >= self.total_numbers:
                raise ValueError(f"Session {self.id} already holds {self.total_numbers} results")
            self.results.append(result)
        self.recompute_counters()

    def resolved_numbers(self) -> Set[str]:
        return {r.number for r in self.results if r.is_terminal}

    def remaining_records(self) -> List[PhoneNumberRecord]:
        """Records from the original batch without a terminal result, in input order."""
        resolved = self.resolved_numbers()
        return [r for r in self.original_numbers if r.canonical not in resolved]

    def recompute_counters(self) -> None:
        # Import here to avoid circular imports
        from wa_checker.core.adapters import is_rate_limit_error

        outcomes = [r.outcome for r in self.results]
        self.total_numbers = max(self.total_numbers, len(self.original_numbers))
        self.completed_numbers = sum(1 for o in outcomes if o != PENDING)
        self.successful_checks = outcomes.count(ACTIVE)
        self.not_present_checks = outcomes.count(NOT_PRESENT)
        self.api_error_checks = outcomes.count(API_ERROR)
        self.failed_checks = self.not_present_checks + self.api_error_checks
        self.rate_limited_checks = sum(
            1 for r, o in zip(self.results, outcomes) if o == API_ERROR and is_rate_limit_error(r)
        )

    # --- Serialization ---
    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "file_name": self.file_name,
            "total_numbers": self.total_numbers,
            "completed_numbers": self.completed_numbers,
            "successful_checks": self.successful_checks,
            "failed_checks": self.failed_checks,
            "not_present_checks": self.not_present_checks,
            "api_error_checks": self.api_error_checks,
            "rate_limited_checks": self.rate_limited_checks,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "paused_at": self.paused_at,
            "last_resumed_at": self.last_resumed_at,
            "is_starred": self.is_starred,
            "error_message": self.error_message,
            # The key itself stays in settings.json; sessions keep a masked reference
            "settings": {**self.settings.to_dict(), "api_key": mask_api_key(self.settings.api_key)},
            "original_numbers": [r.to_dict() for r in self.original_numbers],
            "results": [r.to_dict() for r in self.results],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        session = cls(
            id=data["id"],
            original_numbers=[PhoneNumberRecord.from_dict(r) for r in data.get("original_numbers", [])],
            settings=CheckSettings.from_dict(data.get("settings")),
            status=data.get("status", "pending"),
            results=[LookupResult.from_dict(r) for r in data.get("results", [])],
            file_name=data.get("file_name", "Current Session"),
            total_numbers=int(data.get("total_numbers") or 0),
            start_time=data.get("start_time") or time.time(),
            end_time=data.get("end_time"),
            paused_at=data.get("paused_at"),
            last_resumed_at=data.get("last_resumed_at"),
            is_starred=bool(data.get("is_starred", False)),
            error_message=data.get("error_message"),
        )
        session.recompute_counters()
        return session
