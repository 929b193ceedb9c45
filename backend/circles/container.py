"""Process-wide engine instances shared by the API routers."""

from __future__ import annotations

from typing import Optional

from circles.communities.domain.posts_service import PostsService
from circles.communities.domain.services import MembershipEngine
from circles.domain.social.service import FriendGraphEngine
from circles.infra.notifications import NotificationSink, RedisStreamNotificationSink
from circles.moderation.domain.reports_service import ModerationEngine

_notifications: Optional[NotificationSink] = None
_friends: Optional[FriendGraphEngine] = None
_membership: Optional[MembershipEngine] = None
_posts: Optional[PostsService] = None
_moderation: Optional[ModerationEngine] = None


def get_notification_sink() -> NotificationSink:
	global _notifications
	if _notifications is None:
		_notifications = RedisStreamNotificationSink()
	return _notifications


def get_friend_engine() -> FriendGraphEngine:
	global _friends
	if _friends is None:
		_friends = FriendGraphEngine(notifications=get_notification_sink())
	return _friends


def get_membership_engine() -> MembershipEngine:
	global _membership
	if _membership is None:
		_membership = MembershipEngine(notifications=get_notification_sink())
	return _membership


def get_posts_service() -> PostsService:
	global _posts
	if _posts is None:
		_posts = PostsService(membership=get_membership_engine(), notifications=get_notification_sink())
	return _posts


def get_moderation_engine() -> ModerationEngine:
	global _moderation
	if _moderation is None:
		_moderation = ModerationEngine(
			posts=get_posts_service(),
			membership=get_membership_engine(),
			notifications=get_notification_sink(),
		)
	return _moderation


def reset_container(*, notifications: Optional[NotificationSink] = None) -> None:
	"""Drop cached engines; tests call this after swapping the store or sink."""
	global _notifications, _friends, _membership, _posts, _moderation
	_notifications = notifications
	_friends = _membership = _posts = _moderation = None
