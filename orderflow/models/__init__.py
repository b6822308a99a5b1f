from orderflow.models.tenant import Tenant
from orderflow.models.conversation import Conversation
from orderflow.models.conversation_lock import ConversationLock
from orderflow.models.processed_message import ProcessedMessage
from orderflow.models.message_log import MessageLog
from orderflow.models.menu_category import MenuCategory
from orderflow.models.menu_item import MenuItem
from orderflow.models.modifier_group import ModifierGroup
from orderflow.models.modifier_option import ModifierOption
from orderflow.models.menu_item_modifier_group import MenuItemModifierGroup
from orderflow.models.menu_synonym import MenuSynonym
from orderflow.models.store import Store
from orderflow.models.delivery_rule import DeliveryRule
from orderflow.models.order import Order
from orderflow.models.order_item import OrderItem
from orderflow.models.order_payment import OrderPayment
from orderflow.models.order_intent import OrderIntent
from orderflow.models.order_number_sequence import OrderNumberSequence
from orderflow.models.customer_address import CustomerAddress
from orderflow.models.customer_profile import CustomerProfile
from orderflow.models.whatsapp_config import WhatsAppConfig
from orderflow.models.ai_config import AIConfig
from orderflow.models.ai_message_log import AIMessageLog
