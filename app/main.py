"""
Streamlit Frontend for Expense Tracker

A thin client of the HTTP API. It never touches storage directly: every
action is an authenticated request against expense_tracker.api.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Clear error messages taken straight from the API
3. Safe retries: each expense form submission carries one idempotency key,
   kept until the API confirms the save, so pressing "Save" again after a
   timeout can never create a second expense
"""

from datetime import date
from typing import Optional
from uuid import uuid4

import requests
import streamlit as st

from expense_tracker.config import get_settings, validate_all_settings


# Page configuration
st.set_page_config(
    page_title="Expense Tracker",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)


class ApiError(Exception):
    """An error response (or no response) from the API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ApiClient:
    """Minimal requests-based client for the Expense Tracker API."""

    def __init__(self, base_url: str, timeout: float):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        headers: Optional[dict] = None,
        **kwargs,
    ):
        all_headers = dict(headers or {})
        if token:
            all_headers["Authorization"] = f"Bearer {token}"
        try:
            response = self._session.request(
                method,
                f"{self._base_url}{path}",
                headers=all_headers,
                timeout=self._timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise ApiError(f"Could not reach the server: {e}")

        if response.status_code == 204:
            return None
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code >= 400:
            message = payload.get("error", {}).get("message") or response.reason
            raise ApiError(message, response.status_code)
        return payload

    # Auth

    def request_passcode(self, email: str, intent: str) -> dict:
        return self._request("POST", "/auth/request-otp", json={"email": email, "intent": intent})

    def verify_passcode(self, email: str, intent: str, otp: str, password: str) -> dict:
        return self._request(
            "POST",
            "/auth/verify-otp",
            json={"email": email, "intent": intent, "otp": otp, "password": password},
        )

    def login(self, email: str, password: str) -> dict:
        return self._request("POST", "/auth/login", json={"email": email, "password": password})

    def login_google(self, id_token: str) -> dict:
        return self._request("POST", "/auth/google", json={"id_token": id_token})

    # Expenses

    def create_expense(self, token: str, idempotency_key: str, expense: dict) -> dict:
        return self._request(
            "POST",
            "/expenses",
            token=token,
            headers={"Idempotency-Key": idempotency_key},
            json=expense,
        )

    def list_expenses(self, token: str, params: dict) -> dict:
        return self._request("GET", "/expenses", token=token, params=params)

    def delete_expense(self, token: str, expense_id: str) -> None:
        self._request("DELETE", f"/expenses/{expense_id}", token=token)


@st.cache_resource
def get_client() -> ApiClient:
    """Get or create the API client (cached)."""
    settings = get_settings().app
    return ApiClient(settings.api_url, settings.api_timeout_seconds)


def init_state():
    defaults = {
        "token": None,
        "user": None,
        "expense_key": None,
        "page": 1,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


def sign_in(session: dict):
    st.session_state.token = session["access_token"]
    st.session_state.user = session["user"]
    st.session_state.page = 1


def sign_out():
    st.session_state.token = None
    st.session_state.user = None
    st.session_state.expense_key = None


def handle_auth_error(error: ApiError):
    """A 401 on an authenticated call means the session is gone."""
    if error.status_code == 401 and st.session_state.token:
        sign_out()
        st.warning("Your session has expired. Please sign in again.")
    else:
        st.error(str(error))


def main():
    """Main application entry point."""
    init_state()
    client = get_client()

    st.sidebar.title("💰 Expense Tracker")
    st.sidebar.markdown("---")

    if st.session_state.token:
        st.sidebar.markdown(f"Signed in as **{st.session_state.user['email']}**")
        if st.sidebar.button("Sign out"):
            sign_out()
            st.rerun()
        pages = ["➕ Add Expense", "📊 Expenses", "⚙️ Settings"]
    else:
        pages = ["🔑 Sign In", "✉️ Sign Up / Reset Password", "⚙️ Settings"]

    page = st.sidebar.radio("Navigate to:", pages, index=0)

    if page == "🔑 Sign In":
        render_sign_in_page(client)
    elif page == "✉️ Sign Up / Reset Password":
        render_passcode_page(client)
    elif page == "➕ Add Expense":
        render_add_expense_page(client)
    elif page == "📊 Expenses":
        render_expenses_page(client)
    elif page == "⚙️ Settings":
        render_settings_page()


def render_sign_in_page(client: ApiClient):
    """Password login, plus Google sign-in with an ID token."""
    st.title("🔑 Sign In")

    with st.form("login"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Sign in", type="primary")

    if submitted:
        try:
            sign_in(client.login(email, password))
            st.rerun()
        except ApiError as e:
            st.error(str(e))

    with st.expander("Sign in with Google"):
        st.caption("Paste the ID token returned by Google Sign-In.")
        id_token = st.text_area("Google ID token")
        if st.button("Continue with Google"):
            try:
                sign_in(client.login_google(id_token))
                st.rerun()
            except ApiError as e:
                st.error(str(e))


def render_passcode_page(client: ApiClient):
    """Two-step passcode flow for sign-up and password reset."""
    st.title("✉️ Sign Up / Reset Password")

    intent = st.radio(
        "What would you like to do?",
        options=["signup", "password_reset"],
        format_func=lambda x: "Create an account" if x == "signup" else "Reset my password",
        horizontal=True,
    )
    email = st.text_input("Email")

    st.markdown("**Step 1.** Get a one-time passcode by email")
    if st.button("Send passcode"):
        try:
            result = client.request_passcode(email, intent)
            st.success(
                f"Passcode sent. It expires in {result['expires_in_minutes']} minutes."
            )
        except ApiError as e:
            st.error(str(e))

    st.markdown("**Step 2.** Enter the passcode and choose a password")
    with st.form("verify"):
        otp = st.text_input("6-digit passcode", max_chars=6)
        password = st.text_input("New password (8-72 characters)", type="password")
        submitted = st.form_submit_button("Verify and continue", type="primary")

    if submitted:
        try:
            sign_in(client.verify_passcode(email, intent, otp, password))
            st.rerun()
        except ApiError as e:
            st.error(str(e))


def render_add_expense_page(client: ApiClient):
    """Record an expense. Retrying a failed save reuses the same key."""
    st.title("➕ Add Expense")

    if st.session_state.expense_key is None:
        st.session_state.expense_key = str(uuid4())

    with st.form("expense"):
        col1, col2 = st.columns(2)
        with col1:
            amount = st.text_input("Amount *", placeholder="12.50")
            category = st.text_input("Category *", placeholder="Groceries")
        with col2:
            expense_date = st.date_input("Date *", value=date.today(), max_value=date.today())
            description = st.text_input("Description (optional)")
        submitted = st.form_submit_button("💾 Save", type="primary")

    if not submitted:
        return

    try:
        result = client.create_expense(
            st.session_state.token,
            st.session_state.expense_key,
            {
                "amount": amount,
                "category": category,
                "description": description or None,
                "date": expense_date.isoformat(),
            },
        )
    except ApiError as e:
        if e.status_code is None:
            # No answer: the save may or may not have happened. Keep the
            # key so the retry is answered with the original expense.
            st.warning(f"{e}. Press Save again to retry safely.")
        else:
            handle_auth_error(e)
        return

    st.session_state.expense_key = None
    expense = result["data"]
    if result["replayed"]:
        st.info(f"Already saved: {expense['category']} {expense['amount']} on {expense['date']}")
    else:
        st.success(f"Saved: {expense['category']} {expense['amount']} on {expense['date']}")


def render_expenses_page(client: ApiClient):
    """List with filters and pagination, total of all matches, delete."""
    st.title("📊 Expenses")

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        category = st.text_input("Category contains")
    with col2:
        sort = st.selectbox(
            "Sort",
            options=["newest", "oldest"],
            format_func=lambda x: x.title(),
        )
    with col3:
        year = st.number_input("Year", min_value=0, max_value=9999, value=0, help="0 = any year")
    with col4:
        month = st.selectbox(
            "Month",
            options=[0] + list(range(1, 13)),
            format_func=lambda x: "Any" if x == 0 else date(2000, x, 1).strftime("%B"),
            disabled=year == 0,
        )

    params = {"sort": sort, "page": st.session_state.page, "page_size": 20}
    if category:
        params["category"] = category
    if year:
        params["year"] = int(year)
        if month:
            params["month"] = month

    try:
        result = client.list_expenses(st.session_state.token, params)
    except ApiError as e:
        handle_auth_error(e)
        return

    pagination = result["pagination"]
    st.metric("Total (all matching expenses)", result["total"])
    st.markdown("---")

    if not result["data"]:
        st.info("No expenses match these filters.")

    for expense in result["data"]:
        row = st.columns([2, 2, 4, 2, 1])
        row[0].write(expense["date"])
        row[1].write(expense["category"])
        row[2].write(expense["description"] or "")
        row[3].write(expense["amount"])
        if row[4].button("🗑️", key=f"delete-{expense['id']}"):
            try:
                client.delete_expense(st.session_state.token, expense["id"])
                st.rerun()
            except ApiError as e:
                handle_auth_error(e)

    st.markdown("---")
    prev_col, info_col, next_col = st.columns([1, 2, 1])
    if prev_col.button("← Previous", disabled=pagination["page"] <= 1):
        st.session_state.page -= 1
        st.rerun()
    info_col.markdown(
        f"Page {pagination['page']} of {pagination['total_pages']} "
        f"({pagination['total_items']} expenses)"
    )
    if next_col.button("Next →", disabled=pagination["page"] >= pagination["total_pages"]):
        st.session_state.page += 1
        st.rerun()


def render_settings_page():
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Server Configuration")

    status = validate_all_settings()

    services = [
        ("Session signing (JWT)", "session"),
        ("Google Sign-In", "google"),
        ("Email delivery (SMTP)", "smtp"),
        ("Database", "database"),
    ]

    for name, key in services:
        if status.get(key, False):
            st.success(f"✅ {name} - Configured")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("---")
    st.markdown("### Configuration")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
