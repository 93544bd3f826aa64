"""Raw page-state snapshot collected inside the browsing context.

Field aliases follow the camelCase keys produced by the in-page
snapshot script (see ``logincapture.capture.snapshot``).
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LinkInfo(BaseModel):
    """A same-origin relative link and the context around it."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    href: str = ""
    aria_label: str = Field(default="", alias="ariaLabel")
    has_profile_image: bool = Field(default=False, alias="hasProfileImage")
    context_testid: str = Field(default="", alias="contextTestid")


class PageSnapshot(BaseModel):
    """Everything the username heuristics may look at, captured at one instant."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str = ""
    cookies: str = ""
    visible_text: str = Field(default="", alias="visibleText")
    profile_link_href: str = Field(default="", alias="profileLinkHref")
    account_switcher_text: str = Field(default="", alias="accountSwitcherText")
    tablist_hrefs: list[str] = Field(default_factory=list, alias="tablistHrefs")
    links: list[LinkInfo] = Field(default_factory=list)
    local_storage: dict[str, str] = Field(default_factory=dict, alias="localStorage")
