"""
Repository layer for database operations.
Provides high-level methods for common database queries and operations.
"""
from typing import Any, Dict, List, Optional
from sqlalchemy import or_, func
from sqlalchemy.orm import Session
from db.models import (
    User, Post, PostType, Conversation, ConversationMember, Message, Notification, utcnow
)

POST_SORT_COLUMNS = {
    "created_at": Post.created_at,
    "price": Post.price,
}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Repository:
    """Repository class for database operations."""

    def __init__(self, db: Session):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    # User operations
    def create_user(
        self,
        email: str,
        username: str,
        clerk_id: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        avatar: Optional[str] = None
    ) -> User:
        """Create a new user."""
        user = User(
            clerk_id=clerk_id,
            email=email,
            username=username,
            first_name=first_name,
            last_name=last_name,
            avatar=avatar
        )
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_clerk_id(self, clerk_id: str) -> Optional[User]:
        """Get user by Clerk user ID."""
        return self.db.query(User).filter(User.clerk_id == clerk_id).first()

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by e-mail (case-insensitive)."""
        return self.db.query(User).filter(func.lower(User.email) == email.lower()).first()

    def get_user_by_username(self, username: str) -> Optional[User]:
        """Get user by username."""
        return self.db.query(User).filter(User.username == username).first()

    def update_user(self, user: User, fields: Dict[str, Any]) -> User:
        """Apply field updates to a user and persist them."""
        for name, value in fields.items():
            setattr(user, name, value)
        self.db.commit()
        self.db.refresh(user)
        return user

    def delete_user(self, user: User) -> None:
        """Delete a user; posts, memberships, messages and notifications cascade."""
        self.db.delete(user)
        self.db.commit()

    # Post operations
    def create_post(self, owner_id: int, fields: Dict[str, Any]) -> Post:
        """Create a new listing."""
        post = Post(owner_id=owner_id, **fields)
        self.db.add(post)
        self.db.commit()
        self.db.refresh(post)
        return post

    def get_post_by_id(self, post_id: int) -> Optional[Post]:
        """Get listing by ID."""
        return self.db.query(Post).filter(Post.id == post_id).first()

    def get_user_posts(self, owner_id: int) -> List[Post]:
        """Get listings owned by a user, newest first."""
        return self.db.query(Post).filter(
            Post.owner_id == owner_id
        ).order_by(Post.created_at.desc(), Post.id.desc()).all()

    def search_posts(
        self,
        search: Optional[str] = None,
        post_type: Optional[PostType] = None,
        offer: Optional[bool] = None,
        parking: Optional[bool] = None,
        furnished: Optional[bool] = None,
        sort: str = "created_at",
        order: str = "desc",
        limit: int = 9,
        offset: int = 0
    ) -> List[Post]:
        """
        Search listings.

        Boolean filters are only applied when given; ``search`` matches the
        title or the address case-insensitively.
        """
        query = self.db.query(Post)

        if search:
            pattern = f"%{_escape_like(search.lower())}%"
            query = query.filter(or_(
                func.lower(Post.title).like(pattern, escape="\\"),
                func.lower(Post.address).like(pattern, escape="\\")
            ))
        if post_type is not None:
            query = query.filter(Post.type == post_type)
        if offer is not None:
            query = query.filter(Post.offer == offer)
        if parking is not None:
            query = query.filter(Post.parking == parking)
        if furnished is not None:
            query = query.filter(Post.furnished == furnished)

        column = POST_SORT_COLUMNS.get(sort, Post.created_at)
        if order == "asc":
            query = query.order_by(column.asc(), Post.id.asc())
        else:
            query = query.order_by(column.desc(), Post.id.desc())

        return query.limit(limit).offset(offset).all()

    def update_post(self, post: Post, fields: Dict[str, Any]) -> Post:
        """Apply field updates to a listing and persist them."""
        for name, value in fields.items():
            setattr(post, name, value)
        self.db.commit()
        self.db.refresh(post)
        return post

    def delete_post(self, post: Post) -> None:
        self.db.delete(post)
        self.db.commit()

    # Conversation operations
    def create_conversation(self, creator_id: int, participant_id: int, post_id: Optional[int] = None) -> Conversation:
        """Create a two-party conversation with both members."""
        conversation = Conversation(creator_id=creator_id, post_id=post_id)
        conversation.members = [
            ConversationMember(user_id=creator_id),
            ConversationMember(user_id=participant_id)
        ]
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def get_conversation_by_id(self, conversation_id: int) -> Optional[Conversation]:
        """Get conversation by ID."""
        return self.db.query(Conversation).filter(Conversation.id == conversation_id).first()

    def find_conversation_between(
        self,
        user_id: int,
        other_user_id: int,
        post_id: Optional[int] = None
    ) -> Optional[Conversation]:
        """Find the conversation joining two users about the same listing (or none)."""
        candidates = self.db.query(Conversation).join(ConversationMember).filter(
            ConversationMember.user_id == user_id,
            Conversation.post_id == post_id if post_id is not None else Conversation.post_id.is_(None)
        ).all()
        for conversation in candidates:
            if other_user_id in self.get_member_ids(conversation.id):
                return conversation
        return None

    def get_user_conversations(self, user_id: int) -> List[Conversation]:
        """Get the conversations a user takes part in, most recently active first."""
        return self.db.query(Conversation).join(ConversationMember).filter(
            ConversationMember.user_id == user_id
        ).order_by(Conversation.updated_at.desc(), Conversation.id.desc()).all()

    def get_member_ids(self, conversation_id: int) -> List[int]:
        """Get IDs of all members of a conversation."""
        rows = self.db.query(ConversationMember.user_id).filter(
            ConversationMember.conversation_id == conversation_id
        ).all()
        return [row[0] for row in rows]

    def is_conversation_member(self, conversation_id: int, user_id: int) -> bool:
        """Check if user is a member of conversation."""
        member = self.db.query(ConversationMember).filter(
            ConversationMember.conversation_id == conversation_id,
            ConversationMember.user_id == user_id
        ).first()
        return member is not None

    def delete_conversation(self, conversation: Conversation) -> None:
        """Delete a conversation together with its members and messages."""
        self.db.delete(conversation)
        self.db.commit()

    # Message operations
    def create_message(self, conversation: Conversation, sender_id: int, receiver_id: int, content: str) -> Message:
        """Create a new message and bump the conversation's activity timestamp."""
        now = utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            created_at=now
        )
        self.db.add(message)
        conversation.updated_at = now
        self.db.commit()
        self.db.refresh(message)
        return message

    def get_message_by_id(self, message_id: int) -> Optional[Message]:
        """Get message by ID."""
        return self.db.query(Message).filter(Message.id == message_id).first()

    def get_conversation_messages(self, conversation_id: int, limit: int = 50, offset: int = 0) -> List[Message]:
        """Get messages from a conversation, oldest first."""
        return self.db.query(Message).filter(
            Message.conversation_id == conversation_id
        ).order_by(Message.created_at.asc(), Message.id.asc()).limit(limit).offset(offset).all()

    def count_conversation_messages(self, conversation_id: int) -> int:
        """Count all messages of a conversation."""
        return self.db.query(func.count(Message.id)).filter(
            Message.conversation_id == conversation_id
        ).scalar()

    def get_last_message(self, conversation_id: int) -> Optional[Message]:
        return self.db.query(Message).filter(
            Message.conversation_id == conversation_id
        ).order_by(Message.created_at.desc(), Message.id.desc()).first()

    def delete_message(self, message: Message) -> None:
        self.db.delete(message)
        self.db.commit()

    # Notification operations
    def create_notification(
        self,
        user_id: int,
        message: str,
        from_user_id: Optional[int] = None,
        conversation_id: Optional[int] = None
    ) -> Notification:
        """Create a notification for a user."""
        notification = Notification(
            user_id=user_id,
            from_user_id=from_user_id,
            conversation_id=conversation_id,
            message=message
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def get_notification_by_id(self, notification_id: int) -> Optional[Notification]:
        return self.db.query(Notification).filter(Notification.id == notification_id).first()

    def get_user_notifications(self, user_id: int) -> List[Notification]:
        """Get a user's notifications, unread first then newest."""
        return self.db.query(Notification).filter(
            Notification.user_id == user_id
        ).order_by(
            Notification.is_read.asc(),
            Notification.created_at.desc(),
            Notification.id.desc()
        ).all()

    def mark_notification_read(self, notification: Notification) -> Notification:
        notification.is_read = True
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def delete_notification(self, notification: Notification) -> None:
        self.db.delete(notification)
        self.db.commit()

    def delete_conversation_notifications(self, user_id: int, conversation_id: int) -> int:
        """
        Delete a user's notifications for one conversation.

        Returns:
            Number of notifications removed
        """
        deleted = self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.conversation_id == conversation_id
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted
