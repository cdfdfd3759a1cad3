"""Data models for Fubako."""

from datetime import datetime, timedelta, timezone
from functools import total_ordering
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, GetCoreSchemaHandler
from pydantic_core import core_schema

from fubako.core.errors import InvalidPageIdError

PAGE_ID_FORMAT = "%Y%m%dT%H%M%SZ"


@total_ordering
class PageId:
    """Page identifier derived from a UTC timestamp with second precision.

    The string form is compact ISO-8601 basic (``20251224T000000Z``) and
    round-trips exactly through :meth:`parse`.
    """

    __slots__ = ("_value",)

    def __init__(self, value: datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        self._value = value.astimezone(timezone.utc).replace(microsecond=0)

    @classmethod
    def parse(cls, text: str) -> "PageId":
        """Parse a PageId, rejecting anything that would not round-trip."""
        try:
            value = datetime.strptime(text, PAGE_ID_FORMAT)
        except (TypeError, ValueError) as e:
            raise InvalidPageIdError(f"invalid page ID: {text!r}") from e
        page_id = cls(value)
        # strptime accepts unpadded fields such as "2025124T..."
        if str(page_id) != text:
            raise InvalidPageIdError(f"invalid page ID: {text!r}")
        return page_id

    @classmethod
    def now(cls) -> "PageId":
        return cls(datetime.now(timezone.utc))

    @classmethod
    def root(cls) -> "PageId":
        """The reserved ID of the page shown at ``/``."""
        return cls(datetime(1970, 1, 1, tzinfo=timezone.utc))

    def next(self) -> "PageId":
        """Return the ID one second later."""
        return PageId(self._value + timedelta(seconds=1))

    @property
    def timestamp(self) -> datetime:
        return self._value

    def __str__(self) -> str:
        return self._value.strftime(PAGE_ID_FORMAT)

    def __repr__(self) -> str:
        return f"PageId('{self}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PageId):
            return NotImplemented
        return self._value == other._value

    def __lt__(self, other: "PageId") -> bool:
        if not isinstance(other, PageId):
            return NotImplemented
        return self._value < other._value

    def __hash__(self) -> int:
        return hash(self._value)

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        from_str = core_schema.no_info_plain_validator_function(cls._validate)
        return core_schema.json_or_python_schema(
            json_schema=core_schema.chain_schema(
                [core_schema.str_schema(), from_str]
            ),
            python_schema=from_str,
            serialization=core_schema.plain_serializer_function_ser_schema(str),
        )

    @classmethod
    def _validate(cls, value: Any) -> "PageId":
        if isinstance(value, PageId):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        raise InvalidPageIdError(f"invalid page ID: {value!r}")


class PageMeta(BaseModel):
    """Metadata derived from a page's markdown source."""

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    links: frozenset[PageId] = Field(default_factory=frozenset)


class BacklinkView(BaseModel):
    """A page linking to the page being viewed."""

    id: PageId
    title: str | None = None

    @property
    def label(self) -> str:
        return self.title or str(self.id)


class PageView(BaseModel):
    """Consistent snapshot of one page's index entry."""

    id: PageId
    meta: PageMeta
    backlinks: list[BacklinkView] = Field(default_factory=list)

    @property
    def title(self) -> str:
        """Return the page title, or the ID when the page has no heading."""
        return self.meta.title or str(self.id)
