
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Union


class Coding(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    display: str
    system: Optional[str] = None


class IndexedCoding(Coding):
    # display with the first parenthetical removed and modality abbreviations added
    search: str


class SelectOption(BaseModel):
    label: str
    value: str
    data: Coding

    @classmethod
    def from_coding(cls, coding: Coding) -> "SelectOption":
        return cls(label=coding.display, value=coding.code, data=coding)


class ServiceRequestDraft(BaseModel):
    """Draft imaging order: at most one study, reasons unique by code."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    study_coding: Optional[Coding] = Field(default=None, alias="studyCoding")
    reason_codings: List[Coding] = Field(default_factory=list, alias="reasonCodings")

    def with_study(self, coding: Coding) -> "ServiceRequestDraft":
        return self.model_copy(update={"study_coding": coding})

    def without_study(self) -> "ServiceRequestDraft":
        return self.model_copy(update={"study_coding": None})

    def add_reason(self, coding: Coding) -> "ServiceRequestDraft":
        if any(r.code == coding.code for r in self.reason_codings):
            return self
        return self.model_copy(update={"reason_codings": [*self.reason_codings, coding]})

    def remove_reason(self, coding: Coding) -> "ServiceRequestDraft":
        kept = [r for r in self.reason_codings if r.code != coding.code]
        return self.model_copy(update={"reason_codings": kept})


class OrderEntryState(BaseModel):
    """Read-only view of the host store handed to the trigger handler."""

    model_config = ConfigDict(populate_by_name=True)

    service_request: ServiceRequestDraft = Field(
        default_factory=ServiceRequestDraft, alias="serviceRequest"
    )
    patient_id: Optional[str] = Field(default=None, alias="patientId")
    pama_rating: Optional[str] = Field(default=None, alias="pamaRating")


class SystemAction(BaseModel):
    type: str
    resource: Dict[str, Any] = Field(default_factory=dict)


class InboundMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_type: str = Field(alias="messageType")
    payload: Optional[Dict[str, Any]] = None


class ExtractedRating(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_id: Optional[str] = None
    rating: str


# HTTP request/response bodies

class SearchRequest(BaseModel):
    query: str
    # typing session; debouncing never mixes calls from different sessions
    session: Optional[str] = None


class SearchResponse(BaseModel):
    options: List[SelectOption]


class SystemActionsRequest(BaseModel):
    actions: List[Dict[str, Any]] = Field(default_factory=list)


class DispatchResponse(BaseModel):
    dispatched: List[Dict[str, Any]]


class TriggerInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    need_explicit_trigger: Union[bool, str] = Field(alias="needExplicitTrigger")
