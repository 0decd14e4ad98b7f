# clubhouse/routers/pages.py
from __future__ import annotations

from html import escape

from fastapi import APIRouter
from fastapi.responses import HTMLResponse

from clubhouse.config import get_settings

# Page shells only; the gate middleware decides who reaches them.
router = APIRouter(tags=["pages"], include_in_schema=False)

PAGES = {
    "/": "Home",
    "/join": "Join",
    "/login": "Log in",
    "/signup": "Sign up",
    "/terms": "Terms of Service",
    "/privacy": "Privacy Policy",
    "/forgot-password": "Forgot password",
    "/reset-password": "Reset password",
    "/payment": "Membership",
    "/threads": "Community",
    "/classroom": "Classroom",
    "/calendar": "Calendar",
    "/about": "About",
    "/profile": "Profile",
    "/settings": "Settings",
    "/admin": "Admin",
}

PAYMENT_SUCCESS_SCRIPT = """
<script>
  fetch("/api/stripe/subscription-status?wait=true", {credentials: "same-origin"})
    .then(r => r.json())
    .then(body => {
      if (body.status === "success") { window.location.replace("/threads"); return; }
      document.getElementById("status").textContent = body.error || "Payment not confirmed yet.";
    });
</script>
"""


def _shell(title: str, page: str, extra: str = "") -> HTMLResponse:
    org = escape(get_settings().org_name)
    html = (
        "<!doctype html>\n"
        "<html lang=\"en\">\n"
        "<head><meta charset=\"utf-8\">"
        f"<title>{escape(title)} | {org}</title></head>\n"
        f"<body><div id=\"app\" data-page=\"{escape(page)}\"><h1>{escape(title)}</h1>{extra}</div></body>\n"
        "</html>\n"
    )
    return HTMLResponse(html)


def _make_page(path: str, title: str):
    def page():
        return _shell(title, path)

    page.__name__ = "page_" + (path.strip("/").replace("-", "_").replace("/", "_") or "home")
    return page


for _path, _title in PAGES.items():
    router.add_api_route(_path, _make_page(_path, _title), methods=["GET"], response_class=HTMLResponse)


@router.get("/payment/success", response_class=HTMLResponse)
def payment_success_page():
    return _shell(
        "Confirming your payment",
        "/payment/success",
        '<p id="status">Hang tight, we are activating your membership...</p>' + PAYMENT_SUCCESS_SCRIPT,
    )
