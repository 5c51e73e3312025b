"""
Record models for the Gitter REST and streaming APIs.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GitterModel(BaseModel):
    """Base for API records: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class User(GitterModel):
    """A Gitter user."""

    id: str
    username: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    url: Optional[str] = None
    avatar_url_small: Optional[str] = Field(None, alias="avatarUrlSmall")
    avatar_url_medium: Optional[str] = Field(None, alias="avatarUrlMedium")


class Room(GitterModel):
    """
    A room can represent a GitHub organization, a GitHub repository,
    a Gitter channel or a one-to-one conversation.

    ``github_type`` is one of ORG, REPO, ONETOONE, ORG_CHANNEL,
    REPO_CHANNEL or USER_CHANNEL.
    """

    id: str
    name: Optional[str] = None
    topic: Optional[str] = None
    uri: Optional[str] = None
    one_to_one: bool = Field(False, alias="oneToOne")
    user_count: int = Field(0, alias="userCount")
    unread_items: int = Field(0, alias="unreadItems")
    mentions: int = 0
    last_access_time: Optional[datetime] = Field(None, alias="lastAccessTime")
    lurk: bool = False
    url: Optional[str] = None
    github_type: Optional[str] = Field(None, alias="githubType")
    tags: List[str] = Field(default_factory=list)
    room_member: bool = Field(False, alias="roomMember")
    v: Optional[int] = None


class Mention(GitterModel):
    """A user mentioned in a message."""

    screen_name: Optional[str] = Field(None, alias="screenName")
    user_id: Optional[str] = Field(None, alias="userId")


class Issue(GitterModel):
    """An issue referenced in a message."""

    number: Optional[str] = None


class MessageURL(GitterModel):
    url: str


class Message(GitterModel):
    """
    A chat message, as returned by the REST API and pushed by the stream.

    ``from_user`` is the sender and ``sent`` the time it was posted.
    """

    id: str
    text: Optional[str] = None
    html: Optional[str] = None
    sent: Optional[datetime] = None
    edited_at: Optional[datetime] = Field(None, alias="editedAt")
    from_user: Optional[User] = Field(None, alias="fromUser")
    unread: bool = False
    read_by: int = Field(0, alias="readBy")
    urls: List[MessageURL] = Field(default_factory=list)
    mentions: List[Mention] = Field(default_factory=list)
    issues: List[Issue] = Field(default_factory=list)
    meta: List[Dict[str, Any]] = Field(default_factory=list)
    v: Optional[int] = None


class Pagination(BaseModel):
    """Optional paging parameters for listing room messages."""

    skip: int = 0
    before_id: Optional[str] = None
    after_id: Optional[str] = None
    limit: int = 0

    def to_params(self) -> Dict[str, str]:
        """Query parameters, leaving out anything unset."""
        params: Dict[str, str] = {}
        if self.after_id:
            params["afterId"] = self.after_id
        if self.before_id:
            params["beforeId"] = self.before_id
        if self.skip > 0:
            params["skip"] = str(self.skip)
        if self.limit > 0:
            params["limit"] = str(self.limit)
        return params
