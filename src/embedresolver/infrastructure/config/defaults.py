"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

# Ordered provider reliability table; the first substring match wins, so
# more specific entries come before broader ones.
DEFAULT_PROVIDERS: list[dict[str, Any]] = [
    {
        "match": "video.sibnet.ru",
        "reliability": 95,
        "description": "SibNet direct MP4, stable and fast",
    },
    {
        "match": "sibnet",
        "reliability": 90,
        "description": "SibNet, usually reliable",
    },
    {
        "match": "sendvid",
        "reliability": 85,
        "description": "SendVid direct MP4",
    },
    {
        "match": "vidmoly",
        "reliability": 80,
        "description": "VidMoly HLS, needs referer",
    },
    {
        "match": "oneupload",
        "reliability": 75,
        "description": "OneUpload HLS",
    },
    {
        "match": "smoothpre",
        "reliability": 72,
        "description": "SmoothPre HLS",
    },
    {
        "match": "movearnpre",
        "reliability": 70,
        "description": "MovearnPre HLS",
    },
    {
        "match": "vk.com",
        "reliability": 65,
        "description": "VK video, region dependent",
    },
    {
        "match": "vkvideo",
        "reliability": 65,
        "description": "VK video, region dependent",
    },
    {
        "match": "myvi",
        "reliability": 60,
        "description": "MyVi, often slow",
    },
    {
        "match": "streamtape",
        "reliability": 55,
        "description": "Streamtape, token expires quickly",
    },
    {
        "match": "voe",
        "reliability": 50,
        "description": "VOE, rotating domains",
    },
    {
        "match": "filemoon",
        "reliability": 45,
        "description": "Filemoon, packed JS",
    },
    {
        "match": "streamwish",
        "reliability": 40,
        "description": "StreamWish, packed JS",
    },
    {
        "match": "dood",
        "reliability": 35,
        "description": "DoodStream, aggressive anti-bot",
    },
    {
        "match": "mixdrop",
        "reliability": 30,
        "description": "Mixdrop, frequent takedowns",
    },
    {
        "match": "uqload",
        "reliability": 25,
        "description": "Uqload, unreliable",
    },
]

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "embedresolver",
    "environment": "dev",
    "http": {
        "max_connections": 10,
        "max_keepalive": 5,
    },
    "api": {
        "rate_limit_rpm": 120,
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "cache": {
        "backend": "memory",
        "directory": "./.cache/embedresolver",
        "ttl_seconds": 600,
    },
    "resolver": {
        "fetch_timeout_seconds": 3.0,
        "processing_timeout_seconds": 3.0,
        "max_urls_per_type": 5,
        "max_total_urls": 10,
        "proxy_endpoint": "/api/proxy",
        "cache_ttl_seconds": 600,
        "providers": DEFAULT_PROVIDERS,
    },
}
