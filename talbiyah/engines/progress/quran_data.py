"""
Quran reference data used by the surah progress tracker.

The Talbiyah methodology: Understanding (Fahm) -> Fluency (Itqan) -> Memorization (Hifz).
"""

from typing import Dict, Optional

from pydantic import BaseModel


class SurahInfo(BaseModel):
    number: int
    name: str
    name_arabic: str
    ayat: int
    juz: int


class PillarInfo(BaseModel):
    key: str
    label: str
    label_arabic: str
    description: str
    color: str


PILLARS: Dict[str, PillarInfo] = {
    "fahm": PillarInfo(
        key="fahm",
        label="Understanding",
        label_arabic="فهم",
        description="Comprehend the meanings and context",
        color="blue",
    ),
    "itqan": PillarInfo(
        key="itqan",
        label="Fluency",
        label_arabic="إتقان",
        description="Read with proper Tajweed and rhythm",
        color="emerald",
    ),
    "hifz": PillarInfo(
        key="hifz",
        label="Memorization",
        label_arabic="حفظ",
        description="Commit to memory for life",
        color="purple",
    ),
}

_SURAH_ROWS = [
    (1, "Al-Fatiha", "الفاتحة", 7, 1),
    (78, "An-Naba", "النبأ", 40, 30),
    (79, "An-Naziat", "النازعات", 46, 30),
    (80, "Abasa", "عبس", 42, 30),
    (81, "At-Takwir", "التكوير", 29, 30),
    (82, "Al-Infitar", "الانفطار", 19, 30),
    (83, "Al-Mutaffifin", "المطففين", 36, 30),
    (84, "Al-Inshiqaq", "الانشقاق", 25, 30),
    (85, "Al-Buruj", "البروج", 22, 30),
    (86, "At-Tariq", "الطارق", 17, 30),
    (87, "Al-Ala", "الأعلى", 19, 30),
    (88, "Al-Ghashiyah", "الغاشية", 26, 30),
    (89, "Al-Fajr", "الفجر", 30, 30),
    (90, "Al-Balad", "البلد", 20, 30),
    (91, "Ash-Shams", "الشمس", 15, 30),
    (92, "Al-Layl", "الليل", 21, 30),
    (93, "Ad-Duha", "الضحى", 11, 30),
    (94, "Ash-Sharh", "الشرح", 8, 30),
    (95, "At-Tin", "التين", 8, 30),
    (96, "Al-Alaq", "العلق", 19, 30),
    (97, "Al-Qadr", "القدر", 5, 30),
    (98, "Al-Bayyinah", "البينة", 8, 30),
    (99, "Az-Zalzalah", "الزلزلة", 8, 30),
    (100, "Al-Adiyat", "العاديات", 11, 30),
    (101, "Al-Qariah", "القارعة", 11, 30),
    (102, "At-Takathur", "التكاثر", 8, 30),
    (103, "Al-Asr", "العصر", 3, 30),
    (104, "Al-Humazah", "الهمزة", 9, 30),
    (105, "Al-Fil", "الفيل", 5, 30),
    (106, "Quraysh", "قريش", 4, 30),
    (107, "Al-Maun", "الماعون", 7, 30),
    (108, "Al-Kawthar", "الكوثر", 3, 30),
    (109, "Al-Kafirun", "الكافرون", 6, 30),
    (110, "An-Nasr", "النصر", 3, 30),
    (111, "Al-Masad", "المسد", 5, 30),
    (112, "Al-Ikhlas", "الإخلاص", 4, 30),
    (113, "Al-Falaq", "الفلق", 5, 30),
    (114, "An-Nas", "الناس", 6, 30),
]

SURAHS: Dict[int, SurahInfo] = {
    number: SurahInfo(number=number, name=name, name_arabic=arabic, ayat=ayat, juz=juz)
    for number, name, arabic, ayat, juz in _SURAH_ROWS
}

TOTAL_TRACKED_AYAT = sum(s.ayat for s in SURAHS.values())


def get_surah_info(surah_number: int) -> Optional[SurahInfo]:
    """Get surah info by number, None for surahs outside the tracked set."""
    return SURAHS.get(surah_number)


def get_surah_name(surah_number: int) -> str:
    surah = get_surah_info(surah_number)
    return surah.name if surah else f"Surah {surah_number}"


def get_pillar_info(pillar: Optional[str]) -> Optional[PillarInfo]:
    if not pillar:
        return None
    return PILLARS.get(pillar)
