"""Default keyword taxonomy loaded into an empty catalog."""

from __future__ import annotations

from app.models.listener import KeywordCategory

PAIN = KeywordCategory.PAIN_SIGNAL
REGULATORY = KeywordCategory.REGULATORY
COST = KeywordCategory.COST
COMPETITOR = KeywordCategory.COMPETITOR

BOT = ("captcha_replacement",)
VOICE = ("voice_captcha",)
AGE = ("age_verification",)
BOT_VOICE = ("captcha_replacement", "voice_captcha")
VOICE_AGE = ("voice_captcha", "age_verification")
ALL_PRODUCTS = ("captcha_replacement", "voice_captcha", "age_verification")

# (keyword, category, weight, product tags)
SEED_KEYWORDS: tuple[tuple[str, KeywordCategory, int, tuple[str, ...]], ...] = (
    # bots, scraping and automation
    ("bot", PAIN, 3, BOT),
    ("bots", PAIN, 3, BOT),
    ("bot attack", PAIN, 5, BOT),
    ("bot traffic", PAIN, 5, BOT),
    ("bot detection", PAIN, 5, BOT),
    ("bot prevention", PAIN, 5, BOT),
    ("bot mitigation", PAIN, 5, BOT),
    ("bot protection", PAIN, 5, BOT),
    ("anti-bot", PAIN, 5, BOT),
    ("web scraping", PAIN, 5, BOT),
    ("scraper", PAIN, 4, BOT),
    ("scrapers", PAIN, 4, BOT),
    ("scraping attack", PAIN, 5, BOT),
    ("content scraping", PAIN, 5, BOT),
    ("price scraping", PAIN, 5, BOT),
    ("crawler", PAIN, 3, BOT),
    ("crawlers", PAIN, 3, BOT),
    ("aggressive crawler", PAIN, 5, BOT),
    ("ai crawler", PAIN, 5, BOT),
    ("gptbot", PAIN, 5, BOT),
    ("automated attack", PAIN, 5, BOT),
    ("automation abuse", PAIN, 5, BOT),
    ("headless browser", PAIN, 4, BOT),
    ("selenium", PAIN, 3, BOT),
    ("puppeteer", PAIN, 3, BOT),
    # ticketing and limited releases
    ("scalper", PAIN, 4, BOT),
    ("scalpers", PAIN, 4, BOT),
    ("ticket scalping", PAIN, 5, BOT),
    ("ticket bot", PAIN, 5, BOT),
    ("ticket bots", PAIN, 5, BOT),
    ("scalper bot", PAIN, 5, BOT),
    ("scalper bots", PAIN, 5, BOT),
    ("scalping bot", PAIN, 5, BOT),
    ("anti-scalping", PAIN, 5, BOT),
    ("ticket resale", PAIN, 4, BOT),
    ("sneaker bot", PAIN, 5, BOT),
    ("drop bot", PAIN, 5, BOT),
    # rate limits, captcha and ddos
    ("rate limit", PAIN, 4, BOT),
    ("rate limiting", PAIN, 4, BOT),
    ("api abuse", PAIN, 5, BOT),
    ("api scraping", PAIN, 5, BOT),
    ("captcha", PAIN, 3, BOT_VOICE),
    ("recaptcha", PAIN, 3, BOT_VOICE),
    ("hcaptcha", PAIN, 3, BOT_VOICE),
    ("captcha bypass", PAIN, 5, BOT_VOICE),
    ("captcha solver", PAIN, 5, BOT_VOICE),
    ("captcha farm", PAIN, 5, BOT_VOICE),
    ("ddos", PAIN, 4, BOT),
    ("traffic spike", PAIN, 3, BOT),
    ("layer 7 attack", PAIN, 5, BOT),
    # phone and voice verification
    ("voice verification", PAIN, 5, VOICE),
    ("phone verification", PAIN, 5, VOICE),
    ("voice authentication", PAIN, 5, VOICE),
    ("sms verification", PAIN, 4, VOICE),
    ("sms otp", PAIN, 4, VOICE),
    ("otp bypass", PAIN, 5, VOICE),
    ("sms pumping", PAIN, 5, VOICE),
    ("sms toll fraud", PAIN, 5, VOICE),
    ("sim swap", PAIN, 5, VOICE),
    ("virtual phone number", PAIN, 5, VOICE),
    ("burner phone", PAIN, 5, VOICE),
    ("disposable number", PAIN, 5, VOICE),
    ("voice clone", PAIN, 5, VOICE),
    ("deepfake", PAIN, 4, VOICE_AGE),
    # age verification
    ("age verification", PAIN, 5, AGE),
    ("age gate", PAIN, 5, AGE),
    ("age check", PAIN, 5, AGE),
    ("age assurance", PAIN, 5, AGE),
    ("underage", PAIN, 4, AGE),
    ("alcohol delivery", PAIN, 4, AGE),
    ("cannabis delivery", PAIN, 4, AGE),
    ("online gambling", PAIN, 4, AGE),
    ("sports betting", PAIN, 4, AGE),
    ("adult content", PAIN, 4, AGE),
    # regulation
    ("coppa", REGULATORY, 5, AGE),
    ("child safety", REGULATORY, 5, AGE),
    ("kosa", REGULATORY, 5, AGE),
    ("kids online safety", REGULATORY, 5, AGE),
    ("age appropriate design", REGULATORY, 5, AGE),
    ("online safety act", REGULATORY, 5, AGE),
    ("digital services act", REGULATORY, 4, AGE),
    # account fraud
    ("fake account", PAIN, 5, ALL_PRODUCTS),
    ("fake accounts", PAIN, 5, ALL_PRODUCTS),
    ("bot accounts", PAIN, 5, BOT),
    ("spam accounts", PAIN, 5, BOT),
    ("account takeover", PAIN, 5, BOT_VOICE),
    ("credential stuffing", PAIN, 5, BOT),
    ("brute force", PAIN, 4, BOT),
    ("signup fraud", PAIN, 5, BOT_VOICE),
    ("signup abuse", PAIN, 5, BOT_VOICE),
    ("promo abuse", PAIN, 5, BOT_VOICE),
    ("referral abuse", PAIN, 5, BOT_VOICE),
    ("synthetic identity", PAIN, 5, VOICE_AGE),
    ("card testing", PAIN, 5, BOT),
    ("carding", PAIN, 5, BOT),
    # platform abuse
    ("fake reviews", PAIN, 5, BOT),
    ("review fraud", PAIN, 5, BOT),
    ("fake followers", PAIN, 5, BOT),
    ("fake engagement", PAIN, 5, BOT),
    ("comment spam", PAIN, 4, BOT),
    ("marketplace fraud", PAIN, 5, BOT),
    ("trust and safety", PAIN, 4, BOT),
    ("trust & safety", PAIN, 4, BOT),
    ("fraud prevention", PAIN, 4, BOT),
    ("device fingerprint", PAIN, 4, BOT),
    ("residential proxy", PAIN, 4, BOT),
    ("ai bots", PAIN, 5, BOT),
    ("llm abuse", PAIN, 5, BOT),
    # cost pressure
    ("bandwidth costs", COST, 3, BOT),
    ("infrastructure costs", COST, 2, BOT),
    ("sms costs", COST, 3, VOICE),
    ("verification costs", COST, 3, VOICE_AGE),
    ("captcha costs", COST, 3, BOT),
    # competitors
    ("cloudflare bot", COMPETITOR, 3, BOT),
    ("akamai bot", COMPETITOR, 3, BOT),
    ("imperva", COMPETITOR, 3, BOT),
    ("datadome", COMPETITOR, 3, BOT),
    ("perimeterx", COMPETITOR, 3, BOT),
    ("kasada", COMPETITOR, 3, BOT),
    ("arkose labs", COMPETITOR, 3, BOT),
    ("twilio verify", COMPETITOR, 3, VOICE),
    ("yoti", COMPETITOR, 3, AGE),
    ("veriff", COMPETITOR, 3, AGE),
    ("onfido", COMPETITOR, 3, AGE),
    ("jumio", COMPETITOR, 3, AGE),
)
