"""
API endpoint implementations.
Defines the REST endpoints for users, auth, posts, conversations, messages
and notifications. Real-time delivery lives in api/relay.py, not here: persisting
a message never notifies connected sockets.
"""
import logging
from typing import List, Literal, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session
from api.dependencies import get_db, get_current_user
from api.schemas import (
    UserResponse, UserUpdate,
    PostCreate, PostUpdate, PostResponse,
    ConversationCreate, ConversationResponse,
    MessageCreate, MessageResponse, MessageListResponse,
    NotificationCreate, NotificationResponse,
    DeletedCountResponse, StatusMessage
)
from core.audit_logger import audit_logger
from core.security import SESSION_COOKIE_NAME
from db.repository import Repository
from db.models import User, Conversation, PostType

logger = logging.getLogger(__name__)

# Create routers
users_router = APIRouter()
auth_router = APIRouter()
posts_router = APIRouter()
conversations_router = APIRouter()
messages_router = APIRouter()
notifications_router = APIRouter()


def _ensure_self(current_user: User, user_id: int, action: str) -> None:
    if current_user.id != user_id:
        audit_logger.log_authorization_denied(current_user.id, f"user:{user_id}", action, "Not the account owner")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only modify your own account"
        )


def _check_offer(price: float, discount_price: Optional[float], offer: bool) -> None:
    """A listing on offer needs a discount price strictly below its price."""
    if not offer:
        return
    if discount_price is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Discount price is required when the listing is on offer"
        )
    if discount_price >= price:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Discount price must be lower than regular price"
        )


def _get_conversation_for(repository: Repository, conversation_id: int, user: User) -> Conversation:
    """Load a conversation the user participates in (404 / 403 otherwise)."""
    conversation = repository.get_conversation_by_id(conversation_id)
    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )
    if not repository.is_conversation_member(conversation_id, user.id):
        audit_logger.log_authorization_denied(user.id, f"conversation:{conversation_id}", "read", "Not a participant")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this conversation"
        )
    return conversation


def _conversation_response(repository: Repository, conversation: Conversation, viewer_id: int) -> ConversationResponse:
    participant_ids = repository.get_member_ids(conversation.id)
    partner_id = next((member_id for member_id in participant_ids if member_id != viewer_id), None)
    partner = repository.get_user_by_id(partner_id) if partner_id is not None else None
    last_message = repository.get_last_message(conversation.id)

    return ConversationResponse(
        id=conversation.id,
        creator_id=conversation.creator_id,
        post_id=conversation.post_id,
        participant_ids=participant_ids,
        partner=UserResponse.model_validate(partner) if partner else None,
        last_message=MessageResponse.model_validate(last_message) if last_message else None,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at
    )


# User Endpoints
@users_router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: int, db: Session = Depends(get_db)):
    """
    Get a user's public profile.

    Raises:
        HTTPException: 404 Not Found if the user does not exist
    """
    user = Repository(db).get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@users_router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    request: UserUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Update the caller's own profile.

    Only the fields present in the body are changed.

    Raises:
        HTTPException: 403 Forbidden when updating someone else
        HTTPException: 409 Conflict if the username is taken
    """
    _ensure_self(current_user, user_id, "update")
    repository = Repository(db)

    fields = request.model_dump(exclude_unset=True)
    if "avatar" in fields and fields["avatar"] is not None:
        fields["avatar"] = str(fields["avatar"])

    username = fields.get("username")
    if username and username != current_user.username:
        existing = repository.get_user_by_username(username)
        if existing and existing.id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Username already taken"
            )

    user = repository.update_user(current_user, fields)
    logger.info(f"User {user.id} updated profile fields {sorted(fields)}")
    return user


@users_router.delete("/{user_id}", response_model=StatusMessage)
def delete_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Delete the caller's local account together with their listings.

    The Clerk identity itself is managed by Clerk; its ``user.deleted``
    webhook is a no-op once the local row is gone.
    """
    _ensure_self(current_user, user_id, "delete")
    Repository(db).delete_user(current_user)
    logger.info(f"User {user_id} deleted their account")
    return StatusMessage(message="User has been deleted")


@users_router.get("/{user_id}/posts", response_model=List[PostResponse])
def get_user_posts(user_id: int, db: Session = Depends(get_db)):
    """List the listings owned by a user, newest first."""
    repository = Repository(db)
    if not repository.get_user_by_id(user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return repository.get_user_posts(user_id)


# Auth Endpoints
@auth_router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    """Return the user behind the presented Clerk session."""
    return current_user


@auth_router.post("/signout", response_model=StatusMessage)
def signout(response: Response):
    """
    Clear the session cookie.

    Clerk owns the session itself; this only drops the cookie for clients
    that rely on it. Always succeeds.
    """
    response.delete_cookie(SESSION_COOKIE_NAME)
    return StatusMessage(message="User has been logged out")


# Post Endpoints
@posts_router.post("", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
def create_post(
    request: PostCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Create a property listing owned by the caller.

    Raises:
        HTTPException: 400 Bad Request if the offer/discount rule is broken

    Example Request:
        ```json
        POST /api/posts
        Authorization: Bearer <token>
        {
            "title": "Lake view apartment",
            "description": "Two bedrooms, close to the park",
            "address": "12 Lake Road, Dhaka",
            "area": 1200,
            "bed": 2,
            "bath": 2,
            "price": 950,
            "discount_price": 900,
            "offer": true,
            "parking": true,
            "furnished": false,
            "type": "rent",
            "images": ["https://cdn.example.com/listing/1.jpg"]
        }
        ```
    """
    _check_offer(request.price, request.discount_price, request.offer)

    fields = request.model_dump()
    fields["type"] = PostType(request.type)
    fields["images"] = [str(url) for url in request.images]
    if not request.offer:
        fields["discount_price"] = None

    post = Repository(db).create_post(current_user.id, fields)
    logger.info(f"Post {post.id} created by user {current_user.id}")
    return post


@posts_router.get("", response_model=List[PostResponse])
def search_posts(
    search: Optional[str] = Query(None, max_length=100, description="Matches title or address"),
    type: Literal["rent", "sale", "all"] = Query("all"),
    offer: Optional[bool] = Query(None),
    parking: Optional[bool] = Query(None),
    furnished: Optional[bool] = Query(None),
    sort: Literal["created_at", "price"] = Query("created_at"),
    order: Literal["asc", "desc"] = Query("desc"),
    limit: int = Query(9, ge=1, le=50),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
):
    """
    Search listings.

    Example Request:
        ```
        GET /api/posts?search=lake&type=rent&parking=true&sort=price&order=asc
        ```
    """
    return Repository(db).search_posts(
        search=search.strip() if search else None,
        post_type=None if type == "all" else PostType(type),
        offer=offer,
        parking=parking,
        furnished=furnished,
        sort=sort,
        order=order,
        limit=limit,
        offset=offset
    )


@posts_router.get("/{post_id}", response_model=PostResponse)
def get_post(post_id: int, db: Session = Depends(get_db)):
    post = Repository(db).get_post_by_id(post_id)
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return post


@posts_router.patch("/{post_id}", response_model=PostResponse)
def update_post(
    post_id: int,
    request: PostUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Update a listing owned by the caller.

    The offer/discount rule is checked against the listing as it would look
    after the update.

    Raises:
        HTTPException: 403 Forbidden if the caller does not own the listing
        HTTPException: 404 Not Found if the listing does not exist
    """
    repository = Repository(db)
    post = repository.get_post_by_id(post_id)
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    if post.owner_id != current_user.id:
        audit_logger.log_authorization_denied(current_user.id, f"post:{post_id}", "update", "Not the owner")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only update your own listings"
        )

    fields = request.model_dump(exclude_unset=True)
    if "type" in fields and fields["type"] is not None:
        fields["type"] = PostType(fields["type"])
    if "images" in fields and fields["images"] is not None:
        fields["images"] = [str(url) for url in fields["images"]]

    offer = fields.get("offer", post.offer)
    discount_price = fields.get("discount_price", post.discount_price)
    _check_offer(fields.get("price", post.price), discount_price, offer)
    if not offer:
        fields["discount_price"] = None

    post = repository.update_post(post, fields)
    logger.info(f"Post {post.id} updated by user {current_user.id}")
    return post


@posts_router.delete("/{post_id}", response_model=StatusMessage)
def delete_post(
    post_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    repository = Repository(db)
    post = repository.get_post_by_id(post_id)
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    if post.owner_id != current_user.id:
        audit_logger.log_authorization_denied(current_user.id, f"post:{post_id}", "delete", "Not the owner")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only delete your own listings"
        )

    repository.delete_post(post)
    logger.info(f"Post {post_id} deleted by user {current_user.id}")
    return StatusMessage(message="Post has been deleted")


# Conversation Endpoints
@conversations_router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
def create_conversation(
    request: ConversationCreate,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Open a conversation with another user.

    If the two users already have a conversation about the same listing it is
    returned with 200 instead of creating a duplicate.

    Raises:
        HTTPException: 400 Bad Request when talking to yourself
        HTTPException: 404 Not Found if the participant or listing does not exist
    """
    repository = Repository(db)

    if request.participant_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot start a conversation with yourself"
        )
    if not repository.get_user_by_id(request.participant_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Participant not found")
    if request.post_id is not None and not repository.get_post_by_id(request.post_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")

    conversation = repository.find_conversation_between(current_user.id, request.participant_id, request.post_id)
    if conversation:
        response.status_code = status.HTTP_200_OK
    else:
        conversation = repository.create_conversation(current_user.id, request.participant_id, request.post_id)
        logger.info(
            f"Conversation {conversation.id} created by user {current_user.id} "
            f"with user {request.participant_id}"
        )

    return _conversation_response(repository, conversation, current_user.id)


@conversations_router.get("", response_model=List[ConversationResponse])
def list_conversations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the caller's conversations, most recently active first."""
    repository = Repository(db)
    conversations = repository.get_user_conversations(current_user.id)
    return [_conversation_response(repository, conversation, current_user.id) for conversation in conversations]


@conversations_router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    repository = Repository(db)
    conversation = _get_conversation_for(repository, conversation_id, current_user)
    return _conversation_response(repository, conversation, current_user.id)


@conversations_router.delete("/{conversation_id}", response_model=StatusMessage)
def delete_conversation(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a conversation and all of its messages (participants only)."""
    repository = Repository(db)
    conversation = _get_conversation_for(repository, conversation_id, current_user)
    repository.delete_conversation(conversation)
    logger.info(f"Conversation {conversation_id} deleted by user {current_user.id}")
    return StatusMessage(message="Conversation has been deleted")


# Message Endpoints
@messages_router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def send_message(
    request: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Persist a message in a conversation.

    The receiver is the other participant. Live delivery is the client's job
    (``send_message`` on the relay); this endpoint does not emit anything.

    Raises:
        HTTPException: 403 Forbidden if the caller is not a participant
        HTTPException: 404 Not Found if the conversation does not exist
        HTTPException: 409 Conflict if the other participant no longer exists
    """
    repository = Repository(db)
    conversation = _get_conversation_for(repository, request.conversation_id, current_user)

    receiver_id = next(
        (member_id for member_id in repository.get_member_ids(conversation.id) if member_id != current_user.id),
        None
    )
    if receiver_id is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The other participant has left this conversation"
        )

    message = repository.create_message(conversation, current_user.id, receiver_id, request.content)
    logger.info(f"Message {message.id} stored in conversation {conversation.id}")
    return message


@messages_router.get("/{conversation_id}", response_model=MessageListResponse)
def get_messages(
    conversation_id: int,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a conversation's messages, oldest first."""
    repository = Repository(db)
    _get_conversation_for(repository, conversation_id, current_user)
    messages = repository.get_conversation_messages(conversation_id, limit, offset)
    return MessageListResponse(
        messages=[MessageResponse.model_validate(message) for message in messages],
        total=repository.count_conversation_messages(conversation_id),
        limit=limit,
        offset=offset
    )


@messages_router.delete("/{message_id}", response_model=StatusMessage)
def delete_message(
    message_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    repository = Repository(db)
    message = repository.get_message_by_id(message_id)
    if not message:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    if message.sender_id != current_user.id:
        audit_logger.log_authorization_denied(current_user.id, f"message:{message_id}", "delete", "Not the sender")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only delete your own messages"
        )

    repository.delete_message(message)
    return StatusMessage(message="Message has been deleted")


# Notification Endpoints
@notifications_router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
def create_notification(
    request: NotificationCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Notify another user, typically after sending them a message.

    Raises:
        HTTPException: 404 Not Found if the recipient or conversation does not exist
    """
    repository = Repository(db)
    if not repository.get_user_by_id(request.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recipient not found")
    if request.conversation_id is not None and not repository.get_conversation_by_id(request.conversation_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

    return repository.create_notification(
        user_id=request.user_id,
        message=request.message,
        from_user_id=current_user.id,
        conversation_id=request.conversation_id
    )


@notifications_router.get("", response_model=List[NotificationResponse])
def list_notifications(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the caller's notifications, unread first."""
    return Repository(db).get_user_notifications(current_user.id)


def _get_own_notification(repository: Repository, notification_id: int, user: User):
    notification = repository.get_notification_by_id(notification_id)
    if not notification:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    if notification.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This notification belongs to another user"
        )
    return notification


@notifications_router.patch("/{notification_id}/read", response_model=NotificationResponse)
def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    repository = Repository(db)
    notification = _get_own_notification(repository, notification_id, current_user)
    return repository.mark_notification_read(notification)


@notifications_router.delete("/conversation/{conversation_id}", response_model=DeletedCountResponse)
def clear_conversation_notifications(
    conversation_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Remove the caller's notifications for one conversation, e.g. when the chat is opened."""
    deleted = Repository(db).delete_conversation_notifications(current_user.id, conversation_id)
    return DeletedCountResponse(deleted=deleted)


@notifications_router.delete("/{notification_id}", response_model=StatusMessage)
def delete_notification(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    repository = Repository(db)
    notification = _get_own_notification(repository, notification_id, current_user)
    repository.delete_notification(notification)
    return StatusMessage(message="Notification has been deleted")
