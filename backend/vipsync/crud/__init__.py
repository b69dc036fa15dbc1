"""CRUD 操作模块"""
from .subscription import (
    cancel_other_active as cancel_other_active_subscriptions,
)
from .subscription import (
    create_pending as create_pending_subscription,
)
from .subscription import (
    find_for_payment as find_subscription_for_payment,
)
from .subscription import (
    find_pending_for_payment as find_pending_subscription_for_payment,
)
from .subscription import (
    get as get_subscription,
)
from .subscription import (
    get_by_payment as get_subscription_by_payment,
)
from .subscription import (
    get_active_for_user as get_active_subscription,
)
from .subscription import (
    get_latest_for_user as get_latest_subscription,
)
from .subscription import (
    list_expired_active as list_expired_subscriptions,
)
from .subscription import (
    list_pending as list_pending_subscriptions,
)
from .subscription import (
    list_unsynced_active as list_unsynced_subscriptions,
)
from .subscription import (
    mark_status as mark_subscription_status,
)
from .subscription import (
    save as save_subscription,
)
from .subscription import (
    set_flag as set_subscription_flag,
)
from .system_log import record as record_system_log
from .user import (
    create as create_user,
)
from .user import (
    get_by_discord_id as get_user_by_discord_id,
)
from .user import (
    get_by_id as get_user,
)
from .user import (
    get_by_reference as get_user_by_reference,
)
from .user import (
    update_role as update_user_role,
)

__all__ = [
    "cancel_other_active_subscriptions",
    "create_pending_subscription",
    "find_subscription_for_payment",
    "find_pending_subscription_for_payment",
    "get_subscription",
    "get_subscription_by_payment",
    "get_active_subscription",
    "get_latest_subscription",
    "list_expired_subscriptions",
    "list_pending_subscriptions",
    "list_unsynced_subscriptions",
    "mark_subscription_status",
    "save_subscription",
    "set_subscription_flag",
    "record_system_log",
    "create_user",
    "get_user",
    "get_user_by_discord_id",
    "get_user_by_reference",
    "update_user_role",
]
