from __future__ import annotations

"""Shared vocabularies used across the search heuristics.

Kept out of ``config.py`` because they are data rather than settings: the
stop-word list filters identifier-like tokens pulled out of web snippets, and
the locale table is the default country reference used by the locale booster
when no external reference store is wired in.
"""

from typing import List, Tuple

# Upper-case words that look like identifiers in web snippets but are plain
# English or generic domain vocabulary.
WEB_TOKEN_STOPWORDS = frozenset(
    [
        "SAP", "RFC", "BAPI", "THE", "FOR", "AND", "WITH", "THIS", "THAT",
        "FROM", "INTO", "USING", "USED", "WHEN", "WHERE", "WHICH", "WHAT",
        "HOW", "WHY", "CAN", "WILL", "ALL", "ANY", "NOT", "BUT", "ARE", "WAS",
        "WERE", "BEEN", "HAVE", "HAS", "HAD", "DOES", "DID", "GET", "USE",
        "YOU", "YOUR", "NEW", "OLD", "SET", "RUN", "CODE", "DATA", "TYPE",
        "NAME", "USER", "STEP", "MENU", "LIST", "VIEW", "EDIT", "SAVE",
        "DELETE", "CREATE", "UPDATE", "DISPLAY", "CHANGE", "ENTER", "SELECT",
        "OPTION", "TABLE", "FIELD", "VALUE", "TEXT", "LINE", "ITEM", "NUMBER",
        "DATE", "TIME", "STANDARD", "CUSTOM", "REPORT", "PROGRAM", "FUNCTION",
        "MODULE", "OBJECT", "CLASS", "METHOD", "INTERFACE", "TRANSACTION",
        "SCREEN", "DIALOG", "BATCH", "PROCESS",
    ]
)

# (code, iso_code, canonical_name, aliases)
# The code is the two-digit country grouping embedded in localized
# identifiers, e.g. PC00_M10_CALC is the US payroll driver.
DEFAULT_LOCALE_TABLE: List[Tuple[int, str, str, List[str]]] = [
    (1, "DE", "Germany", ["Deutschland", "German"]),
    (2, "CH", "Switzerland", ["Swiss", "Schweiz"]),
    (3, "AT", "Austria", ["Austrian", "Österreich"]),
    (4, "ES", "Spain", ["Spanish", "España"]),
    (5, "NL", "Netherlands", ["Dutch", "Holland", "Nederland"]),
    (6, "FR", "France", ["French", "Français"]),
    (7, "CA", "Canada", ["Canadian"]),
    (8, "GB", "Great Britain", ["UK", "United Kingdom", "England", "British", "Britain"]),
    (9, "DK", "Denmark", ["Danish", "Danmark"]),
    (10, "US", "United States", ["USA", "America", "American", "United States of America"]),
    (11, "IE", "Ireland", ["Irish"]),
    (12, "BE", "Belgium", ["Belgian", "Belgique"]),
    (13, "AU", "Australia", ["Australian", "Aussie"]),
    (14, "MY", "Malaysia", ["Malaysian"]),
    (15, "IT", "Italy", ["Italian", "Italia"]),
    (16, "ZA", "South Africa", ["South African"]),
    (17, "VE", "Venezuela", ["Venezuelan"]),
    (18, "CZ", "Czech Republic", ["Czech", "Czechia"]),
    (19, "PT", "Portugal", ["Portuguese"]),
    (20, "NO", "Norway", ["Norwegian", "Norge"]),
    (21, "HU", "Hungary", ["Hungarian", "Magyar"]),
    (22, "JP", "Japan", ["Japanese", "Nippon", "日本"]),
    (23, "SE", "Sweden", ["Swedish", "Sverige"]),
    (24, "SA", "Saudi Arabia", ["Saudi", "KSA", "Kingdom of Saudi Arabia"]),
    (25, "SG", "Singapore", ["Singaporean"]),
    (26, "TH", "Thailand", ["Thai"]),
    (27, "HK", "Hong Kong", ["Chinese Hong Kong"]),
    (28, "CN", "China", ["Chinese", "PRC", "People's Republic of China", "中国"]),
    (29, "AR", "Argentina", ["Argentine", "Argentinian"]),
    (30, "LU", "Luxembourg", ["Luxembourgish"]),
    (31, "SK", "Slovakia", ["Slovak"]),
    (32, "MX", "Mexico", ["Mexican", "México"]),
    (33, "RU", "Russia", ["Russian", "Россия"]),
    (34, "ID", "Indonesia", ["Indonesian"]),
    (35, "BN", "Brunei", ["Bruneian"]),
    (36, "UA", "Ukraine", ["Ukrainian", "Україна"]),
    (37, "BR", "Brazil", ["Brazilian", "Brasil"]),
    (38, "CO", "Colombia", ["Colombian"]),
    (39, "CL", "Chile", ["Chilean"]),
    (40, "IN", "India", ["Indian", "Bharat", "भारत"]),
    (41, "KR", "South Korea", ["Korean", "South Korean", "ROK", "Republic of Korea", "한국"]),
    (42, "TW", "Taiwan", ["Taiwanese", "台灣"]),
    (43, "NZ", "New Zealand", ["Kiwi", "New Zealander"]),
    (44, "FI", "Finland", ["Finnish", "Suomi"]),
    (45, "GR", "Greece", ["Greek", "Hellas", "Ελλάδα"]),
    (46, "PL", "Poland", ["Polish", "Polska"]),
    (47, "TR", "Turkey", ["Turkish", "Türkiye"]),
    (48, "PH", "Philippines", ["Filipino", "Pilipinas"]),
    (49, "NA", "Namibia", ["Namibian"]),
    (50, "LS", "Lesotho", ["Basotho"]),
    (51, "BW", "Botswana", ["Batswana", "Motswana"]),
    (52, "SZ", "Swaziland", ["Swazi", "Eswatini"]),
    (53, "MZ", "Mozambique", ["Mozambican"]),
    (54, "KE", "Kenya", ["Kenyan"]),
    (55, "AO", "Angola", ["Angolan"]),
    (56, "ZW", "Zimbabwe", ["Zimbabwean"]),
    (57, "AN", "Netherlands Antilles", ["Antillean"]),
    (58, "HR", "Croatia", ["Croatian", "Hrvatska"]),
    (60, "IS", "Iceland", ["Icelandic", "Ísland"]),
    (61, "RO", "Romania", ["Romanian", "România"]),
    (62, "SI", "Slovenia", ["Slovenian", "Slovenija"]),
    (99, "", "Other Countries", ["International", "Global", "Worldwide", "Multi-country"]),
]
