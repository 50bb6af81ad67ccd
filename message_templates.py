# message_templates.py
"""
Payload builders for the canned Messenger sends.

Each function returns the ``message`` object (or template payload) that
MessengerClient posts as-is. Nothing here talks to the network.
"""
from __future__ import annotations

import random
from typing import Any, Dict, Iterable, List

from db_io import Post

PAYLOAD_GET_STARTED = "GET_STARTED"
PAYLOAD_REPORT = "REPORT"
PAYLOAD_LATEST_POST = "LATEST_POST"
PAYLOAD_BROADCAST = "BROADCAST"

REPORT_CATEGORY_TITLES = {
    "SEX": "Sexual harassment",
    "DOMESTIC": "Domestic violence",
    "OTHERS": "Something else",
    "EVENT": "An event",
    "NEWS": "A piece of news",
}


def _postback(title: str, payload: str) -> Dict[str, str]:
    return {"type": "postback", "title": title, "payload": payload}


def _template(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"attachment": {"type": "template", "payload": payload}}


def main_menu(is_moderator: bool = False) -> Dict[str, Any]:
    buttons = [_postback("Report", PAYLOAD_REPORT), _postback("Latest posts", PAYLOAD_LATEST_POST)]
    if is_moderator:
        buttons.append(_postback("Broadcast", PAYLOAD_BROADCAST))
    return _template({"template_type": "button", "text": "What can I do for you?", "buttons": buttons})


def report_category_menu() -> Dict[str, Any]:
    titles = REPORT_CATEGORY_TITLES
    elements = [
        {
            "title": "What would you like to report?",
            "subtitle": "Everything you tell us stays with our moderators.",
            "buttons": [_postback(titles[key], key) for key in ("SEX", "DOMESTIC", "OTHERS")],
        },
        {
            "title": "Share with the community",
            "buttons": [_postback(titles[key], key) for key in ("EVENT", "NEWS")],
        },
    ]
    return _template({"template_type": "generic", "elements": elements})


def media_url(server_url: str, kind: str) -> str:
    assets = {
        "image": "/assets/rift.png",
        "gif": "/assets/instagram_logo.gif",
        "audio": "/assets/sample.mp3",
        "video": "/assets/allofus480.mov",
        "file": "/assets/test.txt",
    }
    return server_url + assets[kind]


def generic_demo(server_url: str) -> Dict[str, Any]:
    elements = [
        {
            "title": "rift",
            "subtitle": "Next-generation virtual reality",
            "item_url": "https://www.oculus.com/en-us/rift/",
            "image_url": server_url + "/assets/rift.png",
            "buttons": [
                {"type": "web_url", "url": "https://www.oculus.com/en-us/rift/", "title": "Open Web URL"},
                _postback("Call Postback", "Payload for first bubble"),
            ],
        },
        {
            "title": "touch",
            "subtitle": "Your Hands, Now in VR",
            "item_url": "https://www.oculus.com/en-us/touch/",
            "image_url": server_url + "/assets/touch.png",
            "buttons": [
                {"type": "web_url", "url": "https://www.oculus.com/en-us/touch/", "title": "Open Web URL"},
                _postback("Call Postback", "Payload for second bubble"),
            ],
        },
    ]
    return _template({"template_type": "generic", "elements": elements})


def multiple_images(server_url: str) -> Dict[str, Any]:
    names = ("rift", "touch", "travel around the world")
    elements = [{"title": name, "image_url": f"{server_url}/assets/gallery_{i}.jpg"} for i, name in enumerate(names, start=1)]
    return _template({"template_type": "generic", "elements": elements})


def list_demo(server_url: str) -> Dict[str, Any]:
    elements = [
        {"title": "Classic T-Shirt Collection", "subtitle": "See all our colors", "image_url": server_url + "/assets/shirt.png"},
        {"title": "Classic White T-Shirt", "subtitle": "100% Cotton, 200% Comfortable", "image_url": server_url + "/assets/shirt_white.png"},
        {"title": "Classic Blue T-Shirt", "subtitle": "100% Cotton, 200% Comfortable", "image_url": server_url + "/assets/shirt_blue.png"},
    ]
    buttons = [{"type": "web_url", "url": "https://www.facebook.com/", "title": "Visit Page"}]
    return _template({"template_type": "list", "elements": elements, "buttons": buttons})


def receipt_demo(recipient_name: str = "Peter Chang") -> Dict[str, Any]:
    return _template({
        "template_type": "receipt",
        "recipient_name": recipient_name,
        "order_number": f"order{random.randint(0, 999)}",
        "currency": "USD",
        "payment_method": "Visa 1234",
        "timestamp": "1428444852",
        "elements": [
            {"title": "Oculus Rift", "subtitle": "Includes: headset, sensor, remote", "quantity": 1, "price": 599.00, "currency": "USD"},
            {"title": "Samsung Gear VR", "subtitle": "Frost White", "quantity": 1, "price": 99.99, "currency": "USD"},
        ],
        "summary": {"subtotal": 698.99, "shipping_cost": 20.00, "total_tax": 57.67, "total_cost": 626.66},
    })


def quick_reply_demo() -> Dict[str, Any]:
    genres = ("Action", "Comedy", "Drama")
    return {
        "text": "What's your favorite movie genre?",
        "quick_replies": [
            {"content_type": "text", "title": genre, "payload": f"DEVELOPER_DEFINED_PAYLOAD_FOR_PICKING_{genre.upper()}"}
            for genre in genres
        ],
    }


def account_linking(server_url: str) -> Dict[str, Any]:
    return _template({
        "template_type": "button",
        "text": "Welcome. Link your account.",
        "buttons": [{"type": "account_link", "url": server_url + "/authorize"}],
    })


def post_cards(posts: Iterable[Post]) -> List[Dict[str, Any]]:
    elements = []
    for post in posts:
        elements.append({
            "title": post.title,
            "subtitle": post.description,
            "image_url": post.image_url,
            "buttons": [{"type": "web_url", "url": post.link, "title": "Read more"}],
        })
    return elements


def image_cards(urls: Iterable[str], start: int = 1) -> List[Dict[str, Any]]:
    return [
        {"title": f"image-{n}", "image_url": url, "default_action": {"type": "web_url", "url": url}}
        for n, url in enumerate(urls, start=start)
    ]
