"""Customer-facing replies. Turkish, ASCII-folded like the keyword tables."""

from __future__ import annotations

from orderflow.models.customer_address import CustomerAddress
from orderflow.models.order import Order
from orderflow.services.catalog import PublishedMenu
from orderflow.services.geo import GeoCheckResult
from orderflow.services.orders import item_extras, item_options
from orderflow.whatsapp.base import Button, ListRow, ListSection, OutboundMessage

PAY_CASH_ID = "pay_cash"
PAY_CARD_ID = "pay_card"
ADDRESS_ROW_PREFIX = "addr_"
MAX_MENU_ITEMS_PER_CATEGORY = 8
MAX_ADDRESS_ROWS = 10

APOLOGY = "Bir hata olustu. Lutfen tekrar deneyin."

STATUS_MESSAGES = {
    "CONFIRMED": "Siparisiniz #{number} restoran tarafindan onaylandi. ✅",
    "PREPARING": "Siparisiniz #{number} hazirlaniyor. 👨‍🍳",
    "READY": "Siparisiniz #{number} hazir, yola cikmak uzere. 🛵",
    "DELIVERED": "Siparisiniz #{number} teslim edildi. Afiyet olsun!",
    "CANCELLED": "Siparisiniz #{number} iptal edildi. Sorulariniz icin bize yazabilirsiniz.",
}


def format_price(cents: int | None) -> str:
    return f"{(cents or 0) / 100:.2f} TL"


def text(message: str) -> OutboundMessage:
    return OutboundMessage.plain(message)


def greeting() -> str:
    return "Merhaba! 👋 Siparisinizi yazabilirsiniz (orn. \"2 tavuk doner, 1 ayran\"). Menu icin \"menu\" yazin."


def menu_overview(menu: PublishedMenu) -> str:
    if menu.is_empty:
        return "Menumuz su an hazirlaniyor, lutfen daha sonra tekrar deneyin."
    lines = ["📋 Menumuz:"]
    for category in menu.categories:
        active = [item for item in category.items if item.active]
        if not active:
            continue
        lines.append("")
        lines.append(f"*{category.name}*")
        for item in active[:MAX_MENU_ITEMS_PER_CATEGORY]:
            lines.append(f"- {item.name}: {format_price(item.base_price_cents)}")
        if len(active) > MAX_MENU_ITEMS_PER_CATEGORY:
            lines.append(f"  ... ve {len(active) - MAX_MENU_ITEMS_PER_CATEGORY} urun daha")
    lines.append("")
    lines.append("Siparisinizi yazmaniz yeterli.")
    return "\n".join(lines)


def _line_label(item) -> str:
    labels = [option.get("option_name") for option in item_options(item) if option.get("option_name")]
    labels += [
        f"+{extra.get('qty', 1)} {extra.get('name')}" if int(extra.get("qty", 1)) > 1 else f"+{extra.get('name')}"
        for extra in item_extras(item)
        if extra.get("name")
    ]
    if item.notes:
        labels.append(item.notes)
    suffix = f" ({', '.join(labels)})" if labels else ""
    return f"{item.name}{suffix}"


def order_summary(order: Order, *, header: str = "🛒 Sepetiniz:") -> str:
    lines = [header]
    for item in order.items:
        subtotal = int(item.quantity) * int(item.unit_price_cents)
        lines.append(f"  {item.quantity}x {_line_label(item)} - {format_price(subtotal)}")
    lines.append(f"Ara Toplam: {format_price(order.total_cents)}")
    if order.delivery_fee_cents:
        lines.append(f"Teslimat: {format_price(order.delivery_fee_cents)}")
        lines.append(f"Toplam: {format_price(int(order.total_cents or 0) + int(order.delivery_fee_cents))}")
    if order.notes:
        lines.append(f"Not: {order.notes}")
    return "\n".join(lines)


def draft_updated(order: Order) -> str:
    return order_summary(order) + "\n\nBaska bir sey ister misiniz? Siparisi tamamlamak icin \"evet\" yazin."


def order_empty() -> str:
    return "Sepetiniz bos. Ne siparis etmek istersiniz?"


def review_prompt(order: Order) -> str:
    return order_summary(order, header="📝 Siparis ozeti:") + "\n\nOnayliyor musunuz? (evet / iptal / degistir)"


def edit_prompt() -> str:
    return "Tabii, eklemek veya cikarmak istediginiz urunleri yazin."


def review_reminder() -> str:
    return "Siparisi onaylamak icin \"evet\", degistirmek icin \"degistir\", vazgecmek icin \"iptal\" yazin."


def location_request() -> OutboundMessage:
    return OutboundMessage.location_request("📍 Teslimat icin lutfen konumunuzu paylasin.")


def saved_addresses(addresses: list[CustomerAddress]) -> OutboundMessage | None:
    if not addresses:
        return None
    rows = tuple(
        ListRow(
            id=f"{ADDRESS_ROW_PREFIX}{address.id}",
            title=address.label,
            description=address.address_text or None,
        )
        for address in addresses[:MAX_ADDRESS_ROWS]
    )
    return OutboundMessage.with_list(
        "Ya da kayitli adreslerinizden birini secin:",
        "Adresler",
        [ListSection(title="Kayitli adresler", rows=rows)],
    )


def reminder_send_location() -> str:
    return "Devam etmek icin konumunuzu paylasmaniz gerekiyor. 📍 (Vazgecmek icin \"iptal\" yazin.)"


def reminder_location_pin() -> str:
    return "Fotograf yerine lutfen WhatsApp uzerinden konum (pin) gonderin. 📍"


def location_out_of_service(geo: GeoCheckResult) -> str:
    return f"{geo.message}\nFarkli bir konum paylasabilir veya \"iptal\" yazabilirsiniz."


def location_min_basket_not_met(min_basket_cents: int, current_cents: int) -> str:
    missing = max(min_basket_cents - current_cents, 0)
    return (
        f"Bu bolge icin minimum sepet tutari {format_price(min_basket_cents)}. "
        f"Sepetiniz {format_price(current_cents)}, {format_price(missing)} daha eklemeniz gerekiyor. "
        "Ne eklemek istersiniz?"
    )


def location_confirmed(geo: GeoCheckResult) -> str:
    fee = geo.delivery_rule.delivery_fee_cents if geo.delivery_rule else 0
    store = geo.nearest_store.name if geo.nearest_store else ""
    fee_text = "ucretsiz" if not fee else format_price(fee)
    return f"✅ Konumunuz hizmet bolgemizde ({store}). Teslimat ucreti: {fee_text}."


def payment_method_buttons(order: Order) -> OutboundMessage:
    total = int(order.total_cents or 0) + int(order.delivery_fee_cents or 0)
    return OutboundMessage.with_buttons(
        f"Odenecek tutar: {format_price(total)}\nOdeme yontemini secin:",
        [Button(id=PAY_CASH_ID, title="Nakit"), Button(id=PAY_CARD_ID, title="Kredi Karti")],
    )


def payment_link_sent(url: str) -> str:
    return f"💳 Odeme linkiniz: {url}\nOdeme tamamlandiginda siparisiniz restorana iletilecek."


def payment_link_failed() -> str:
    return "Odeme linki olusturulamadi. Kapida nakit odemek icin \"nakit\" yazabilirsiniz."


def payment_link_expired() -> str:
    return "Odeme linkinizin suresi doldu. Lutfen odeme yontemini tekrar secin."


def reminder_payment(url: str | None) -> str:
    if url:
        return f"Odemenizi bekliyoruz: {url}\nNakit odemeye gecmek icin \"nakit\" yazin."
    return "Odemenizi bekliyoruz. Nakit odemeye gecmek icin \"nakit\" yazin."


def payment_success(order: Order) -> str:
    return f"✅ Odemeniz alindi. Siparisiniz #{order.order_number} restoran onayina gonderildi."


def payment_failed() -> str:
    return "Odeme basarisiz oldu. Tekrar denemek icin \"kart\", kapida odemek icin \"nakit\" yazin."


def cash_confirmed(order: Order) -> str:
    total = int(order.total_cents or 0) + int(order.delivery_fee_cents or 0)
    return (
        f"✅ Siparisiniz #{order.order_number} alindi. Kapida nakit odeme: {format_price(total)}.\n"
        "Restoran onayladiginda size haber verecegiz."
    )


def order_cancelled() -> str:
    return "Siparisiniz iptal edildi. Yeni bir siparis icin yazabilirsiniz."


def reset_done() -> str:
    return "Tamam, bastan basliyoruz. 🔄 Ne siparis etmek istersiniz?"


def order_confirmed_ack() -> str:
    return "Siparisiniz isleme alindi, tesekkurler! Yeni bir siparis icin yazmaniz yeterli."


def clarification_fallback() -> str:
    return "Tam anlayamadim, hangi urunu ve kac adet istediginizi yazar misiniz?"


def item_clarification(names: list[str]) -> str:
    return f"Su urunlerden emin olamadim: {', '.join(names)}. Dogru mu, tam adini yazabilir misiniz?"


def agent_handoff() -> str:
    return "Uzgunuz, su an siparisinizi otomatik alamiyoruz. Bir temsilcimiz en kisa surede size yazacak. 🙏"


def media_not_supported() -> str:
    return "Uzgunuz, fotograf ve sesli mesajlari isleyemiyoruz. Siparisinizi yazili olarak iletebilir misiniz?"


def order_first() -> str:
    return "Konumunuzu aldik, once siparisinizi yazar misiniz?"


def confirm_first() -> str:
    return "Konumdan once siparisi onaylamaniz gerekiyor. Sepeti onaylamak icin \"evet\" yazin."


def min_basket_warning(min_basket_cents: int, current_cents: int) -> str:
    return (
        f"ℹ️ Minimum siparis tutari {format_price(min_basket_cents)}, "
        f"sepetiniz su an {format_price(current_cents)}."
    )


def fallback(kind: str, has_draft: bool) -> str:
    if kind == "greeting":
        if has_draft:
            return "Merhaba! Sepetiniz hazir bekliyor. Eklemek istediginiz bir sey var mi?"
        return greeting()
    if kind == "thanks":
        if has_draft:
            return "Rica ederiz! Siparisi tamamlamak icin \"evet\" yazabilirsiniz."
        return "Rica ederiz! Afiyet olsun. 😊"
    if kind == "help":
        if has_draft:
            return (
                "Urun eklemek icin adini yazin, cikarmak icin \"X cikar\" deyin. "
                "Siparisi tamamlamak icin \"evet\", iptal icin \"iptal\" yazin."
            )
        return "Siparis vermek icin urun adini ve adedini yazin (orn. \"2 kola\"). Menu icin \"menu\" yazin."
    if has_draft:
        return "Anlayamadim. Sepetinize urun eklemek icin adini yazin veya tamamlamak icin \"evet\" yazin."
    return "Anlayamadim. Menuyu gormek icin \"menu\" yazabilir ya da siparisinizi yazabilirsiniz."


def status_notification(order: Order) -> str | None:
    template = STATUS_MESSAGES.get(order.status)
    if not template:
        return None
    return template.format(number=order.order_number or order.id)
