"""
Channel Router - who may read and write each message channel of a report.

CHANNELS:
- public:        write = reporter + admins; read = any citizen + admins;
                 workers are excluded from both
- admin_citizen: reporter + admins
- worker:        current or past assignees of the report + admins

A message is stored with its channel and never moves. An actor without the
capability gets ChannelForbidden; nothing is redirected to another channel.
Messaging stays open on closed reports.
"""

from civictrack.config.firebase import get_db
from civictrack.core.exceptions import ChannelForbidden, InvalidInput
from civictrack.models.message import Channel
from civictrack.models.user import Actor
from civictrack.utils.firestore_helpers import utcnow, where_filter
from civictrack.utils.records import MESSAGES, load_assignments, load_report
from typing import Callable, Dict, List, Set
import logging

logger = logging.getLogger(__name__)

READ = "read"
WRITE = "write"


class ChannelRouter:
    """
    Capability checks and storage for report messages.
    """

    def __init__(self, db=None):
        self.db = db or get_db()

    def _assignee_ids(self, report_id: str) -> Set[str]:
        return {data["worker_id"] for _, data in load_assignments(self.db, report_id)}

    def can_access(self, report: Dict, actor: Actor, channel: Channel, action: str) -> bool:
        """
        Capability check for one (actor, channel, action) on a report.

        Args:
            report: Report dict (with id and reporter_id)
            actor: Acting identity
            channel: Message channel
            action: "read" or "write"

        Returns:
            True when the actor holds the capability
        """
        channel = Channel(channel)
        if actor.is_admin:
            return True

        is_reporter = actor.is_citizen and actor.id == report.get("reporter_id")

        if channel == Channel.PUBLIC:
            if action == READ:
                return actor.is_citizen
            return is_reporter
        if channel == Channel.ADMIN_CITIZEN:
            return is_reporter
        if channel == Channel.WORKER:
            return actor.is_worker and actor.id in self._assignee_ids(report["id"])
        return False

    def _require(self, report: Dict, actor: Actor, channel: Channel, action: str) -> None:
        if not self.can_access(report, actor, channel, action):
            logger.info(f"⛔ {actor.role.value} {actor.id} denied {action} on {Channel(channel).value} of report {report['id']}")
            raise ChannelForbidden(Channel(channel).value, actor.id, action)

    @staticmethod
    def _parse_channel(channel) -> Channel:
        try:
            return Channel(channel)
        except ValueError:
            raise InvalidInput(f"Unknown channel: {channel}", field="channel")

    def write(self, report_id: str, sender: Actor, channel: Channel, text: str) -> Dict:
        """
        Post a message to one channel of a report.

        Raises:
            NotFound: If the report does not exist
            ChannelForbidden: If the sender may not write the channel
            InvalidInput: If the text is empty or the channel unknown
        """
        channel = self._parse_channel(channel)
        _, report = load_report(self.db, report_id)
        self._require(report, sender, channel, WRITE)

        if not text or not text.strip():
            raise InvalidInput("Message text cannot be empty", field="text")

        message = {
            "report_id": report_id,
            "sender_id": sender.id,
            "sender_role": sender.role.value,
            "channel": channel.value,
            "text": text.strip(),
            "created_at": utcnow(),
        }
        doc_ref = self.db.collection(MESSAGES).document()
        doc_ref.set(message)
        message["id"] = doc_ref.id

        logger.info(f"💬 {sender.role.value} {sender.id} wrote to {channel.value} of report {report_id}")
        return message

    def _channel_query(self, report_id: str, channel: Channel):
        query = where_filter(self.db.collection(MESSAGES), "report_id", "==", report_id)
        return where_filter(query, "channel", "==", Channel(channel).value)

    @staticmethod
    def _to_messages(docs) -> List[Dict]:
        messages = []
        for doc in docs:
            data = doc.to_dict()
            data["id"] = doc.id
            messages.append(data)
        messages.sort(key=lambda m: m["created_at"])
        return messages

    def read(self, report_id: str, reader: Actor, channel: Channel) -> List[Dict]:
        """
        Messages of one channel, oldest first.

        Raises:
            NotFound, ChannelForbidden, InvalidInput
        """
        channel = self._parse_channel(channel)
        _, report = load_report(self.db, report_id)
        self._require(report, reader, channel, READ)
        return self._to_messages(self._channel_query(report_id, channel).stream())

    def readable_channels(self, report: Dict, reader: Actor) -> List[Channel]:
        return [channel for channel in Channel if self.can_access(report, reader, channel, READ)]

    def list_visible_messages(self, report_id: str, reader: Actor) -> Dict[str, List[Dict]]:
        """Messages grouped by channel, for the channels the reader may read only."""
        _, report = load_report(self.db, report_id)
        return {
            channel.value: self._to_messages(self._channel_query(report_id, channel).stream())
            for channel in self.readable_channels(report, reader)
        }

    def subscribe(self, report_id: str, channel: Channel, reader: Actor, callback: Callable[[List[Dict]], None]):
        """
        Register a change listener on one channel.

        The callback receives the full, ordered message list of the channel on
        every change. It is a notification only: clients that miss events
        re-fetch with read().

        Returns:
            Watch handle; call unsubscribe() to stop
        """
        channel = self._parse_channel(channel)
        _, report = load_report(self.db, report_id)
        self._require(report, reader, channel, READ)

        def _on_snapshot(docs, changes, read_time):
            callback(self._to_messages(docs))

        return self._channel_query(report_id, channel).on_snapshot(_on_snapshot)


# Global service instance (singleton pattern)
_channel_router = None


def get_channel_router() -> ChannelRouter:
    """Get or create ChannelRouter singleton instance."""
    global _channel_router
    if _channel_router is None:
        _channel_router = ChannelRouter()
    return _channel_router
