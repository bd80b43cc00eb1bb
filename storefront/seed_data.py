"""
Baseline data.

DEFAULT_SETTINGS is seeded by both backends when no settings exist.
BASELINE_CATALOG and BASELINE_ADMIN only seed a brand-new snapshot file.
"""

DEFAULT_SETTINGS = {
    "site_title": "YENIX HUB - Premium Store",
    "footer_text": "© 2024 YENIX HUB. All rights reserved.",
    "logo_url": "https://img5.pic.in.th/file/secure-sv1/yonex78756deec19e4cab.png",
    "discord_link": "https://discord.gg/XVXWdfpa",
}

BASELINE_CATALOG = [
    {
        "name": "ACCOUNT",
        "description": "เลือกดูบัญชีที่ต้องการ",
        "image_url": "https://img5.pic.in.th/file/secure-sv1/yonex78756deec19e4cab.png",
        "products": [
            {
                "name": "Grand Piece Online",
                "price": 49.00,
                "stock": 5,
                "description": "ไก่หลัก",
                "image_url": "https://tr.rbxcdn.com/1802d334cb50de3257859b9f528d25ca/768/432/Image/Png",
                "features": ["Level 425-475", "Haki V1", "Geppo"],
                "supported_maps": ["Grand Piece Online"],
            },
            {
                "name": "Rogue Piece",
                "price": 35.00,
                "stock": 10,
                "description": "ไก่ตัน",
                "image_url": "https://tr.rbxcdn.com/1802d334cb50de3257859b9f528d25ca/768/432/Image/Png",
                "features": ["Level Max", "God Human"],
                "supported_maps": ["Rogue Piece"],
            },
        ],
    },
    {
        "name": "PROGRAM",
        "description": "เลือกดูโปรแกรมที่ต้องการ",
        "image_url": "",
        "products": [],
    },
]

# SECURITY: change this password right after first login.
BASELINE_ADMIN = {"username": "admin", "password": "admin", "role": "Super Admin"}

INIT_LOG_ACTION = "System Init"
