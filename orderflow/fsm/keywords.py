# Normalized (lowercase, ASCII-folded); matched by word prefix via contains_keyword.
RESET = ("sifirla", "reset", "bastan")
CONFIRM = ("evet", "onayla", "tamam", "olsun", "tamamla", "onayliyorum")
CANCEL = ("iptal", "vazgec", "istemiyorum", "sil", "temizle")
EDIT = ("hayir", "degistir", "degis", "ekle", "cikar")
MENU = ("menu", "neler var", "fiyat", "liste")
CASH = ("nakit", "kapida")
CARD = ("kart", "kredi")
GREETING = ("merhaba", "selam", "iyi gunler", "nasilsiniz", "hey", "sa")
THANKS = ("tesekkur", "sagol", "eyvallah")
HELP = ("yardim", "nasil", "ne yapabilirim")
