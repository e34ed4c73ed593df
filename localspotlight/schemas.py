from datetime import datetime, date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class GoogleDate(BaseModel):
    year: int
    month: int
    day: int


class EventSchedule(BaseModel):
    startDate: GoogleDate | None = None
    endDate: GoogleDate | None = None


class EventIn(BaseModel):
    title: str | None = None
    schedule: EventSchedule | None = None


class OfferIn(BaseModel):
    couponCode: str | None = None
    redeemOnlineUrl: str | None = None
    termsConditions: str | None = None


class CallToActionIn(BaseModel):
    actionType: str
    url: str | None = None


class MediaIn(BaseModel):
    mediaFormat: str = "PHOTO"
    sourceUrl: str


class CreatePostIn(BaseModel):
    locationId: str = Field(min_length=1)
    summary: str = Field(min_length=1, max_length=1500)
    topicType: Literal["STANDARD", "EVENT", "OFFER"]
    callToAction: CallToActionIn | None = None
    event: EventIn | None = None
    offer: OfferIn | None = None
    media: list[MediaIn] | None = None

    @model_validator(mode="after")
    def check_topic_details(self):
        if self.topicType == "EVENT" and not (self.event and self.event.title and self.event.schedule
                                              and self.event.schedule.startDate):
            raise ValueError("EVENT posts require event.title and event.schedule.startDate")
        if self.topicType == "OFFER" and not (self.offer and self.offer.termsConditions):
            raise ValueError("OFFER posts require offer.termsConditions")
        return self

    def to_google(self) -> dict[str, Any]:
        body = {"languageCode": "en", **self.model_dump(exclude_none=True, exclude={"locationId"})}
        return body


class SyncPostsIn(BaseModel):
    orgId: str = Field(min_length=1)


def first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()))
    message = err.get("msg", "Invalid request")
    if message.startswith("Value error, "):
        return message[len("Value error, "):]
    return f"{field}: {message}" if field else message


class LocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    org_id: str
    account_id: str | None = None
    google_location_name: str
    title: str | None = None
    is_managed: bool | None = None
    meta: dict[str, Any] | None = None
    sync_state: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ScheduleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    org_id: str
    location_id: str
    target_type: str
    target_id: str
    publish_at: datetime
    status: str | None = None
    provider_ref: str | None = None
    retry_count: int | None = None
    next_retry_at: datetime | None = None
    last_error: str | None = None
    meta: dict[str, Any] | None = None
    created_at: datetime | None = None


class GbpPostOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    location_id: str
    google_post_name: str
    summary: str | None = None
    topic_type: str | None = None
    call_to_action_type: str | None = None
    call_to_action_url: str | None = None
    event_title: str | None = None
    event_start_date: date | None = None
    event_end_date: date | None = None
    offer_terms: str | None = None
    media_urls: list[str] | None = None
    state: str | None = None
    search_url: str | None = None
    google_create_time: datetime | None = None


class GenerationSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    org_id: str
    location_id: str
    kind: str
    status: str | None = None
    model: str | None = None
    costs: float | None = None
    risk_score: float | None = None
    output: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
