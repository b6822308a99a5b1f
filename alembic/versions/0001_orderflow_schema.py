from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "0001_orderflow_schema"
down_revision = None
branch_labels = None
depends_on = None


def _has_table(inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _has_index(inspector, table_name: str, index_name: str) -> bool:
    return any(idx["name"] == index_name for idx in inspector.get_indexes(table_name))


def _created_at(timezone: bool = False) -> sa.Column:
    if timezone:
        return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    return sa.Column("created_at", sa.DateTime(), nullable=False)


def _create_tenant_tables(inspector) -> None:
    if not _has_table(inspector, "tenants"):
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("slug", sa.String(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(timezone=True),
        )
        op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    if not _has_table(inspector, "whatsapp_config"):
        op.create_table(
            "whatsapp_config",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("provider", sa.String(), nullable=False, server_default="mock"),
            sa.Column("phone_number_id", sa.String(), nullable=True),
            sa.Column("access_token", sa.String(), nullable=True),
            sa.Column("verify_token", sa.String(), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
            _created_at(timezone=True),
        )
        op.create_index("ix_whatsapp_config_tenant_id", "whatsapp_config", ["tenant_id"], unique=True)

    if not _has_table(inspector, "ai_configs"):
        op.create_table(
            "ai_configs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("provider", sa.String(), nullable=False, server_default="mock"),
            sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("model", sa.String(), nullable=True),
            sa.Column("temperature", sa.Float(), nullable=True),
            sa.Column("system_prompt", sa.Text(), nullable=True),
            _created_at(timezone=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_ai_configs_tenant_id", "ai_configs", ["tenant_id"], unique=True)


def _create_menu_tables(inspector) -> None:
    if not _has_table(inspector, "menu_categories"):
        op.create_table(
            "menu_categories",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(timezone=True),
        )
        op.create_index("ix_menu_categories_tenant_id", "menu_categories", ["tenant_id"], unique=False)

    if not _has_table(inspector, "menu_items"):
        op.create_table(
            "menu_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("category_id", sa.Integer(), sa.ForeignKey("menu_categories.id"), nullable=True),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("price_cents", sa.Integer(), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(timezone=True),
        )
        op.create_index("ix_menu_items_tenant_id", "menu_items", ["tenant_id"], unique=False)
        op.create_index("ix_menu_items_tenant_category", "menu_items", ["tenant_id", "category_id"], unique=False)

    if not _has_table(inspector, "modifier_groups"):
        op.create_table(
            "modifier_groups",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("selection_type", sa.String(length=10), nullable=False, server_default="SINGLE"),
            sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("min_selection", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_selection", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _created_at(),
        )
        op.create_index("ix_modifier_groups_tenant", "modifier_groups", ["tenant_id"], unique=False)

    if not _has_table(inspector, "modifier_options"):
        op.create_table(
            "modifier_options",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("group_id", sa.Integer(), sa.ForeignKey("modifier_groups.id"), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("price_delta_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        )
        op.create_index("ix_modifier_options_group_id", "modifier_options", ["group_id"], unique=False)

    if not _has_table(inspector, "menu_item_modifier_groups"):
        op.create_table(
            "menu_item_modifier_groups",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id"), nullable=False),
            sa.Column("modifier_group_id", sa.Integer(), sa.ForeignKey("modifier_groups.id"), nullable=False),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        )
        op.create_index(
            "ix_menu_item_modifier_groups_tenant_id", "menu_item_modifier_groups", ["tenant_id"], unique=False
        )
        op.create_index(
            "ix_menu_item_modifier_groups_item_group",
            "menu_item_modifier_groups",
            ["tenant_id", "menu_item_id", "modifier_group_id"],
            unique=True,
        )

    if not _has_table(inspector, "menu_synonyms"):
        op.create_table(
            "menu_synonyms",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id"), nullable=False),
            sa.Column("phrase", sa.String(length=120), nullable=False),
            sa.Column("weight", sa.Float(), nullable=False, server_default="1.0"),
        )
        op.create_index("ix_menu_synonyms_tenant_id", "menu_synonyms", ["tenant_id"], unique=False)
        op.create_index("ix_menu_synonyms_menu_item_id", "menu_synonyms", ["menu_item_id"], unique=False)


def _create_store_tables(inspector) -> None:
    if not _has_table(inspector, "stores"):
        op.create_table(
            "stores",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("address", sa.String(length=255), nullable=True),
            sa.Column("lat", sa.Float(), nullable=False),
            sa.Column("lng", sa.Float(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index("ix_stores_tenant_id", "stores", ["tenant_id"], unique=False)

    if not _has_table(inspector, "delivery_rules"):
        op.create_table(
            "delivery_rules",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=False),
            sa.Column("radius_km", sa.Float(), nullable=False),
            sa.Column("min_basket_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("delivery_fee_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index("ix_delivery_rules_tenant_id", "delivery_rules", ["tenant_id"], unique=False)
        op.create_index("ix_delivery_rules_store_id", "delivery_rules", ["store_id"], unique=False)


def _create_conversation_tables(inspector) -> None:
    if not _has_table(inspector, "conversations"):
        op.create_table(
            "conversations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
            sa.Column("customer_phone", sa.String(length=30), nullable=False),
            sa.Column("customer_name", sa.String(length=120), nullable=True),
            sa.Column("phase", sa.String(length=40), nullable=False, server_default="IDLE"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
            sa.Column("active_order_id", sa.Integer(), nullable=True),
            sa.Column("geo_check_json", sa.Text(), nullable=True),
            sa.Column("last_message_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_conversations_tenant_id", "conversations", ["tenant_id"], unique=False)
        op.create_index(
            "ix_conversations_tenant_phone", "conversations", ["tenant_id", "customer_phone"], unique=True
        )

    if not _has_table(inspector, "conversation_locks"):
        op.create_table(
            "conversation_locks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column(
                "conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=False, unique=True
            ),
            sa.Column("locked_by", sa.String(length=120), nullable=False),
            sa.Column("locked_at", sa.DateTime(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_conversation_locks_tenant_id", "conversation_locks", ["tenant_id"], unique=False)
        op.create_index("ix_conversation_locks_expires_at", "conversation_locks", ["expires_at"], unique=False)

    if not _has_table(inspector, "processed_messages"):
        op.create_table(
            "processed_messages",
            sa.Column("message_id", sa.String(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=True),
            _created_at(),
        )
        op.create_index("ix_processed_messages_tenant_id", "processed_messages", ["tenant_id"], unique=False)

    if not _has_table(inspector, "message_logs"):
        op.create_table(
            "message_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=True),
            sa.Column("direction", sa.String(length=3), nullable=False),
            sa.Column("phone", sa.String(length=30), nullable=True),
            sa.Column("message_type", sa.String(length=20), nullable=False),
            sa.Column("text", sa.Text(), nullable=True),
            sa.Column("payload_json", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("provider_message_id", sa.String(), nullable=True),
            _created_at(),
        )
        op.create_index("ix_message_logs_tenant_id", "message_logs", ["tenant_id"], unique=False)
        op.create_index(
            "ix_message_logs_conversation_created", "message_logs", ["conversation_id", "created_at"], unique=False
        )

    if not _has_table(inspector, "ai_message_logs"):
        op.create_table(
            "ai_message_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("conversation_id", sa.Integer(), nullable=True),
            sa.Column("direction", sa.String(), nullable=False),
            sa.Column("provider", sa.String(), nullable=False),
            sa.Column("prompt", sa.Text(), nullable=True),
            sa.Column("raw_response", sa.Text(), nullable=True),
            sa.Column("parsed_json", sa.Text(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("duration_ms", sa.Float(), nullable=True),
            _created_at(timezone=True),
        )
        op.create_index("ix_ai_message_logs_tenant_id", "ai_message_logs", ["tenant_id"], unique=False)
        op.create_index("ix_ai_message_logs_conversation_id", "ai_message_logs", ["conversation_id"], unique=False)


def _create_order_tables(inspector) -> None:
    if not _has_table(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=True),
            sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=True),
            sa.Column("order_number", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False, server_default="DRAFT"),
            sa.Column("customer_phone", sa.String(length=30), nullable=False),
            sa.Column("customer_name", sa.String(length=120), nullable=True),
            sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("delivery_fee_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("delivery_lat", sa.Float(), nullable=True),
            sa.Column("delivery_lng", sa.Float(), nullable=True),
            sa.Column("payment_method", sa.String(length=20), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_orders_tenant_id", "orders", ["tenant_id"], unique=False)
        op.create_index("ix_orders_tenant_number", "orders", ["tenant_id", "order_number"], unique=True)
        op.create_index("ix_orders_conversation_status", "orders", ["conversation_id", "status"], unique=False)

    if not _has_table(inspector, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("menu_item_id", sa.Integer(), sa.ForeignKey("menu_items.id"), nullable=False),
            sa.Column("item_key", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("options_json", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("extras_json", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("notes", sa.Text(), nullable=True),
            _created_at(),
        )
        op.create_index("ix_order_items_tenant_id", "order_items", ["tenant_id"], unique=False)
        op.create_index("ix_order_items_order_id", "order_items", ["order_id"], unique=False)

    if not _has_table(inspector, "order_payments"):
        op.create_table(
            "order_payments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=True),
            sa.Column("method", sa.String(length=20), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("amount_cents", sa.Integer(), nullable=False),
            sa.Column("token", sa.String(length=64), nullable=True),
            sa.Column("checkout_url", sa.String(), nullable=True),
            sa.Column("expires_at", sa.DateTime(), nullable=True),
            sa.Column("paid_at", sa.DateTime(), nullable=True),
            _created_at(),
        )
        op.create_index("ix_order_payments_tenant_id", "order_payments", ["tenant_id"], unique=False)
        op.create_index("ix_order_payments_order_id", "order_payments", ["order_id"], unique=False)
        op.create_index("ix_order_payments_token", "order_payments", ["token"], unique=True)

    if not _has_table(inspector, "order_intents"):
        op.create_table(
            "order_intents",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("conversation_id", sa.Integer(), sa.ForeignKey("conversations.id"), nullable=False),
            sa.Column("message_id", sa.String(), nullable=True),
            sa.Column("user_text", sa.Text(), nullable=False),
            sa.Column("extracted_json", sa.Text(), nullable=False),
            sa.Column("candidate_ids_json", sa.Text(), nullable=False, server_default="[]"),
            sa.Column("confidence", sa.Float(), nullable=False, server_default="0"),
            sa.Column("needs_clarification", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("clarification_question", sa.Text(), nullable=True),
            sa.Column("agent_feedback", sa.String(length=20), nullable=True),
            sa.Column("feedback_at", sa.DateTime(), nullable=True),
            _created_at(),
        )
        op.create_index("ix_order_intents_tenant_id", "order_intents", ["tenant_id"], unique=False)
        op.create_index("ix_order_intents_conversation_id", "order_intents", ["conversation_id"], unique=False)

    if not _has_table(inspector, "order_number_sequences"):
        op.create_table(
            "order_number_sequences",
            sa.Column("tenant_id", sa.Integer(), primary_key=True, autoincrement=False),
            sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
        )


def _create_customer_tables(inspector) -> None:
    if not _has_table(inspector, "customer_addresses"):
        op.create_table(
            "customer_addresses",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("customer_phone", sa.String(length=30), nullable=False),
            sa.Column("label", sa.String(length=60), nullable=False),
            sa.Column("address_text", sa.String(length=255), nullable=True),
            sa.Column("lat", sa.Float(), nullable=False),
            sa.Column("lng", sa.Float(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index(
            "ix_customer_addresses_tenant_phone", "customer_addresses", ["tenant_id", "customer_phone"], unique=False
        )

    if not _has_table(inspector, "customer_profiles"):
        op.create_table(
            "customer_profiles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("customer_phone", sa.String(length=30), nullable=False),
            sa.Column("order_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("preferences_json", sa.Text(), nullable=False, server_default="{}"),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index(
            "ix_customer_profiles_tenant_phone", "customer_profiles", ["tenant_id", "customer_phone"], unique=True
        )


def upgrade() -> None:
    bind = op.get_bind()

    # a ordem importa por causa das foreign keys
    for create in (
        _create_tenant_tables,
        _create_menu_tables,
        _create_store_tables,
        _create_conversation_tables,
        _create_order_tables,
        _create_customer_tables,
    ):
        create(inspect(bind))


# tabela -> indices criados em upgrade(), na ordem reversa de criacao
_DROP_ORDER = [
    ("customer_profiles", ["ix_customer_profiles_tenant_phone"]),
    ("customer_addresses", ["ix_customer_addresses_tenant_phone"]),
    ("order_number_sequences", []),
    ("order_intents", ["ix_order_intents_conversation_id", "ix_order_intents_tenant_id"]),
    ("order_payments", ["ix_order_payments_token", "ix_order_payments_order_id", "ix_order_payments_tenant_id"]),
    ("order_items", ["ix_order_items_order_id", "ix_order_items_tenant_id"]),
    ("orders", ["ix_orders_conversation_status", "ix_orders_tenant_number", "ix_orders_tenant_id"]),
    ("ai_message_logs", ["ix_ai_message_logs_conversation_id", "ix_ai_message_logs_tenant_id"]),
    ("message_logs", ["ix_message_logs_conversation_created", "ix_message_logs_tenant_id"]),
    ("processed_messages", ["ix_processed_messages_tenant_id"]),
    ("conversation_locks", ["ix_conversation_locks_expires_at", "ix_conversation_locks_tenant_id"]),
    ("conversations", ["ix_conversations_tenant_phone", "ix_conversations_tenant_id"]),
    ("delivery_rules", ["ix_delivery_rules_store_id", "ix_delivery_rules_tenant_id"]),
    ("stores", ["ix_stores_tenant_id"]),
    ("menu_synonyms", ["ix_menu_synonyms_menu_item_id", "ix_menu_synonyms_tenant_id"]),
    (
        "menu_item_modifier_groups",
        ["ix_menu_item_modifier_groups_item_group", "ix_menu_item_modifier_groups_tenant_id"],
    ),
    ("modifier_options", ["ix_modifier_options_group_id"]),
    ("modifier_groups", ["ix_modifier_groups_tenant"]),
    ("menu_items", ["ix_menu_items_tenant_category", "ix_menu_items_tenant_id"]),
    ("menu_categories", ["ix_menu_categories_tenant_id"]),
    ("ai_configs", ["ix_ai_configs_tenant_id"]),
    ("whatsapp_config", ["ix_whatsapp_config_tenant_id"]),
    ("tenants", ["ix_tenants_slug"]),
]


def downgrade() -> None:
    bind = op.get_bind()

    for table_name, index_names in _DROP_ORDER:
        inspector = inspect(bind)
        if not _has_table(inspector, table_name):
            continue
        for index_name in index_names:
            if _has_index(inspector, table_name, index_name):
                op.drop_index(index_name, table_name=table_name)
        op.drop_table(table_name)
