from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from config import settings


class BeaconKind(str, Enum):
    GTM_LOAD = "gtm_load"
    ANALYTICS_COLLECT = "analytics_collect"
    OTHER = "other"


class OutcomeStatus(str, Enum):
    TRACKED = "tracked"
    TRACKED_NO_EVENT_NAME = "tracked_no_event_name"
    UNTRACKED = "untracked"
    CLICK_FAILED = "click_failed"


class CtaKind(str, Enum):
    PHONE = "phone"
    EMAIL = "email"
    FORM = "form"


class OverallStatus(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    FAILING = "FAILING"
    ERROR = "ERROR"


class CheckConfig(BaseModel):
    url: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    max_phone_links: int = settings.max_phone_links
    max_email_links: int = settings.max_email_links
    max_forms: int = settings.max_forms
    test_contact_pages: bool = True

    @field_validator("url")
    @classmethod
    def add_scheme(cls, v: str) -> str:
        v = v.strip()
        if "://" not in v:
            return f"https://{v}"
        return v

    @field_validator("max_phone_links", "max_email_links")
    @classmethod
    def clamp_link_cap(cls, v: int) -> int:
        return max(0, min(v, 10))

    @field_validator("max_forms")
    @classmethod
    def clamp_form_cap(cls, v: int) -> int:
        return max(0, min(v, 5))


class Beacon(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    method: str = "GET"
    observed_at: str  # ISO-8601 wall clock, display only
    observed_at_ms: float  # monotonic, used for correlation
    kind: BeaconKind = BeaconKind.OTHER
    event_name: Optional[str] = None
    measurement_id: Optional[str] = None


class TagSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    gtm_ids: list[str] = []
    ga4_ids: list[str] = []
    ignored_ids: list[str] = []  # AW- conversion IDs
    manager_runtime: bool = False  # window.google_tag_manager
    analytics_runtime: bool = False  # gtag() or gtm.js bootstrap entry
    configured_ids: list[str] = []
    data_layer: Optional[list[Any]] = None

    @property
    def loaded(self) -> bool:
        return self.manager_runtime or self.analytics_runtime

    @property
    def initialized(self) -> bool:
        return len(self.configured_ids) > 0


class InteractionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: OutcomeStatus
    event_names: list[str] = []
    beacon_count: int = 0
    reason: Optional[str] = None

    @classmethod
    def click_failed(cls, reason: str) -> "InteractionOutcome":
        return cls(status=OutcomeStatus.CLICK_FAILED, reason=reason)


class InteractionWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: CtaKind
    target: str
    start_ms: float
    end_ms: float
    outcome: Optional[InteractionOutcome] = None
    details: dict[str, Any] = {}

    def contains(self, t_ms: float) -> bool:
        return self.start_ms <= t_ms <= self.end_ms


class ConsentOutcome(BaseModel):
    banner_found: bool = False
    accepted: bool = False
    accepted_fired: bool = False
    framework: str = "unknown"  # onetrust | trustarc | cookiebot | ... | unknown
    selector: Optional[str] = None


class FiredEvent(BaseModel):
    target: str
    event_names: list[str] = []
    relevant_events: list[str] = []
    beacon_count: int = 0
    details: dict[str, Any] = {}


class CtaFailure(BaseModel):
    target: str
    status: OutcomeStatus
    reason: str
    details: dict[str, Any] = {}


class CtaCategoryResult(BaseModel):
    found: int = 0
    tested: int = 0
    working: int = 0
    events: list[FiredEvent] = []
    failures: list[CtaFailure] = []
    interactions: list[InteractionWindow] = []
    embedded_forms: int = 0


class TagsFound(BaseModel):
    gtm: list[str] = []
    ga4: list[str] = []
    ignored: list[str] = []


class TagsFiring(BaseModel):
    gtm_loaded: bool = False
    ga4_loaded: bool = False
    loaded: bool = False
    initialized: bool = False
    gtm_hits: int = 0
    ga4_hits: int = 0
    total_beacons: int = 0
    configured_ids: list[str] = []


class CtaTests(BaseModel):
    phone: CtaCategoryResult = CtaCategoryResult()
    email: CtaCategoryResult = CtaCategoryResult()
    forms: CtaCategoryResult = CtaCategoryResult()


class Evidence(BaseModel):
    beacons: list[Beacon] = []
    data_layer: Optional[list[Any]] = None
    page_load_ms: Optional[int] = None
    events_captured: list[str] = []
    pages_tested: list[str] = []


class HealthReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    final_url: Optional[str] = None
    timestamp: str
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    tags_found: TagsFound = TagsFound()
    tags_firing: TagsFiring = TagsFiring()
    cookie_consent: ConsentOutcome = ConsentOutcome()
    cta_tests: CtaTests = CtaTests()
    issues: list[str] = []
    summary: str = ""
    evidence: Evidence = Evidence()
    overall_status: OverallStatus = OverallStatus.HEALTHY
