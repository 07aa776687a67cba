class Translator:
    """Render display labels in the configured language.

    Keys are the canonical English identifiers; ``en`` falls back to the
    capitalised key.
    """

    def __init__(self, language: str = "ja") -> None:
        self.language = language
        self.translations = {
            "en": {},
            "ja": {
                "chest": "胸",
                "back": "背中",
                "legs": "脚",
                "arms": "腕",
                "shoulders": "肩",
                "abs": "腹筋",
                "cardio": "有酸素",
                "underweight": "低体重",
                "normal": "標準",
                "overweight": "過体重",
                "obese": "肥満",
                "sedentary": "座りがち",
                "light": "軽い運動",
                "moderate": "中程度の運動",
                "active": "活発",
                "very_active": "非常に活発",
            },
        }

    def set_language(self, lang: str) -> None:
        if lang not in self.translations:
            raise ValueError(f"unsupported language: {lang}")
        self.language = lang

    def gettext(self, key: str) -> str:
        table = self.translations[self.language]
        if key in table:
            return table[key]
        return key.replace("_", " ").capitalize() if self.language == "en" else key

