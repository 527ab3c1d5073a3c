from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, time

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import models
from django.utils import timezone


def parse_hhmm(value: str) -> time:
    try:
        hours, minutes = (int(part) for part in str(value).split(":"))
        return time(hour=hours, minute=minutes)
    except (TypeError, ValueError) as exc:
        raise ImproperlyConfigured(f"Shift template time {value!r} must be HH:MM.") from exc


@dataclass(frozen=True)
class ShiftTemplate:
    code: str
    name: str
    start: time
    end: time

    @property
    def overnight(self) -> bool:
        return self.end <= self.start

    def contains(self, moment: time) -> bool:
        if self.overnight:
            return moment >= self.start or moment < self.end
        return self.start <= moment < self.end

    def as_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "name": self.name,
            "start": self.start.strftime("%H:%M"),
            "end": self.end.strftime("%H:%M"),
        }


class MatchKind(models.TextChoices):
    INSIDE = "inside", "Inside"
    UPCOMING = "upcoming", "Upcoming"
    LATEST = "latest", "Latest"


@dataclass(frozen=True)
class TemplateMatch:
    template: ShiftTemplate
    kind: MatchKind


class ShiftTemplateResolver:
    """Maps a wall-clock instant onto the configured daily shift windows."""

    def __init__(self, templates: list[ShiftTemplate], early_open_tolerance_minutes: int):
        if not templates:
            raise ImproperlyConfigured("At least one shift template is required.")
        self.templates = sorted(templates, key=lambda template: template.start)
        self.early_open_tolerance_minutes = early_open_tolerance_minutes

    @classmethod
    def from_settings(cls) -> ShiftTemplateResolver:
        templates = [
            ShiftTemplate(
                code=entry["code"],
                name=entry["name"],
                start=parse_hhmm(entry["start"]),
                end=parse_hhmm(entry["end"]),
            )
            for entry in settings.SHIFT_TEMPLATES
        ]
        return cls(templates, settings.SHIFT_EARLY_OPEN_TOLERANCE_MINUTES)

    def resolve(self, now: datetime) -> TemplateMatch:
        moment = timezone.localtime(now).time()

        for template in self.templates:
            if template.contains(moment):
                return TemplateMatch(template, MatchKind.INSIDE)

        for template in self.templates:
            if moment < template.start:
                return TemplateMatch(template, MatchKind.UPCOMING)

        return TemplateMatch(self.templates[-1], MatchKind.LATEST)

    def early_minutes(self, template: ShiftTemplate, now: datetime) -> int:
        local_now = timezone.localtime(now)
        if template.contains(local_now.time()):
            return 0
        scheduled_start = datetime.combine(local_now.date(), template.start, tzinfo=local_now.tzinfo)
        if local_now >= scheduled_start:
            return 0
        return math.floor((scheduled_start - local_now).total_seconds() / 60)

    def requires_confirmation(self, early_minutes: int) -> bool:
        return early_minutes > self.early_open_tolerance_minutes
