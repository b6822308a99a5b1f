from __future__ import annotations

import json

from orderflow.ai.base import ExtractionRequest

SYSTEM_PROMPT = """Sen bir restoranin WhatsApp siparis asistanisin. Gorevin musterinin mesajindan siparis kalemlerini cikarmak.

Kurallar:
- Sadece ADAY URUNLER listesindeki menu_item_id degerlerini kullan. Listede olmayan urun uydurma.
- action: yeni urun icin "add", cikarilacak urun icin "remove", mevcut satira sadece not/ekstra eklemek icin "keep".
- "sogansiz", "aci olmasin", "X olmadan" gibi istisnalar secenek degil, urunun notes alanina yazilir.
- Secenekler (boyut, aci seviyesi vb.) sadece urunun secenek gruplarindaki adlarla option_selections alanina yazilir.
- Teslimat talimatlari gibi siparisin geneline ait notlar order_notes alanina yazilir.
- Emin olmadigin durumda clarification_question alanina kisa bir Turkce soru yaz ve confidence degerini dusur.
- Mevcut sepetteki urunlere yapilan atiflari ("ondan bir tane daha", "tavuklu olani") sepet ve onceki mesajlarla coz.
- Miktar belirtilmezse qty=1.
"""

_AMBIGUITY_RULES = {
    "ask": "- Genel bir isim (orn. sadece \"doner\") birden fazla urune uyuyorsa MUTLAKA secenekleri sayan bir netlestirme sorusu sor. Spesifik bir isim (orn. \"tavuk doner\") icin soru sorma.",
    "pick": "- Genel bir isim birden fazla urune uyuyorsa en yuksek skorlu adayi sec ve item_confidence degerini 0.6 civarinda tut.",
}


def _format_price(cents: int) -> str:
    return f"{cents / 100:.2f}"


def build_system_prompt(request: ExtractionRequest) -> str:
    lines = [SYSTEM_PROMPT.strip(), _AMBIGUITY_RULES.get(request.ambiguity_policy, _AMBIGUITY_RULES["ask"])]

    lines.append("\nADAY URUNLER:")
    for candidate in request.candidates:
        category = f" ({candidate.category_name})" if candidate.category_name else ""
        lines.append(f"[{candidate.item_id}] {candidate.name}{category} - {_format_price(candidate.base_price_cents)} TL")
        for group in request.option_groups.get(candidate.item_id, []):
            options = ", ".join(
                f"{option.name} (+{_format_price(option.price_delta_cents)} TL)" if option.price_delta_cents else option.name
                for option in group.options
            )
            required = "zorunlu" if group.required else "opsiyonel"
            lines.append(f"    {group.name} [{required}, {group.selection_type}]: {options}")

    if request.draft:
        lines.append("\nMEVCUT SEPET:")
        for line in request.draft:
            options = f" ({', '.join(line.options)})" if line.options else ""
            notes = f" - not: {line.notes}" if line.notes else ""
            lines.append(f"- [{line.menu_item_id}] {line.qty}x {line.name}{options}{notes}")

    if request.preferences:
        lines.append("\nMUSTERI TERCIHLERI (sadece ipucu):")
        lines.append(json.dumps(request.preferences, ensure_ascii=False))

    if request.extra_instructions:
        lines.append("\nRESTORAN NOTU:")
        lines.append(request.extra_instructions.strip())

    return "\n".join(lines)


def build_messages(request: ExtractionRequest) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": build_system_prompt(request)}]
    for turn in request.history:
        role = "user" if turn.role == "customer" else "assistant"
        messages.append({"role": role, "content": turn.text})
    messages.append({"role": "user", "content": request.user_text})
    return messages
