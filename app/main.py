"""
Streamlit Frontend for Personal Budget

This is the interface users work with day to day: sign in, set a
general limit, split it into groups and record income and expenses.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Every action reports success or the exact fields that failed
3. Balances are always recomputed after a change (the page reruns)
4. No hidden actions

The UI holds no business rules. It passes form data to the flows and
renders the ActionResult they return.
"""

import asyncio

import streamlit as st

from src.audit import configure_logging
from src.config import get_settings, validate_all_settings
from src.models.budget import ActionResult, Currency, TransactionType
from src.orchestrator import AppComponents, create_app_components
from src.queries import filter_transactions
from src.services.auth import AuthError
from src.services.exchange import format_currency_amount


# Page configuration
st.set_page_config(
    page_title="Personal Budget",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

TOKEN_KEY = "auth_token"


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@st.cache_resource
def get_components() -> AppComponents:
    """Get or create application components (cached)."""
    configure_logging(get_settings().app.log_level)
    return create_app_components()


def pen(amount: float) -> str:
    return format_currency_amount(amount, Currency.PEN)


def show_result(result: ActionResult, success_text: str) -> bool:
    """Render a flow result. Returns True on success."""
    if result.success:
        st.success(result.message or success_text)
        return True

    st.error(result.error)
    for field, message in result.field_errors.items():
        st.caption(f"• {field.replace('_', ' ')}: {message}")
    return False


def main():
    """Main application entry point."""
    components = get_components()

    handle_sign_in_link(components)

    token = st.session_state.get(TOKEN_KEY)
    user = run_async(components.auth_flow.current_user(token))

    if user is None:
        st.session_state.pop(TOKEN_KEY, None)
        render_sign_in_page(components)
        return

    st.sidebar.title("💰 Personal Budget")
    st.sidebar.caption(user.email)
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["📊 Dashboard", "🧾 Transactions", "🗂️ Groups", "👤 Profile", "⚙️ Settings"],
        index=0,
    )

    st.sidebar.markdown("---")
    if st.sidebar.button("Sign out"):
        run_async(components.auth_flow.sign_out(token))
        st.session_state.pop(TOKEN_KEY, None)
        st.rerun()

    if page == "📊 Dashboard":
        render_dashboard_page(components, user)
    elif page == "🧾 Transactions":
        render_transactions_page(components, user)
    elif page == "🗂️ Groups":
        render_groups_page(components, user)
    elif page == "👤 Profile":
        render_profile_page(components, user, token)
    elif page == "⚙️ Settings":
        render_settings_page(components)


def handle_sign_in_link(components: AppComponents):
    """Complete a one-time link sign-in carried in the query string."""
    params = st.query_params
    if "token" not in params or "email" not in params:
        return

    result = run_async(
        components.auth_flow.verify_sign_in_link(params["email"], params["token"])
    )
    st.query_params.clear()
    if result.success:
        st.session_state[TOKEN_KEY] = result.data.token
    else:
        st.error(result.error)


def render_sign_in_page(components: AppComponents):
    """Password sign-in, sign-up and one-time link sign-in."""
    st.title("💰 Personal Budget")

    sign_in_tab, sign_up_tab, link_tab = st.tabs(["Sign in", "Create account", "Email link"])

    with sign_in_tab:
        with st.form("sign_in"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Sign in")
        if submitted:
            result = run_async(
                components.auth_flow.sign_in({"email": email, "password": password})
            )
            if show_result(result, "Welcome back!"):
                st.session_state[TOKEN_KEY] = result.data.token
                st.rerun()

    with sign_up_tab:
        with st.form("sign_up"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            submitted = st.form_submit_button("Create account")
        if submitted:
            result = run_async(
                components.auth_flow.sign_up({"email": email, "password": password})
            )
            if show_result(result, "Account created"):
                st.session_state[TOKEN_KEY] = result.data.token
                st.rerun()

    with link_tab:
        with st.form("sign_in_link"):
            email = st.text_input("Email")
            submitted = st.form_submit_button("Send sign-in link")
        if submitted:
            result = run_async(
                components.auth_flow.request_sign_in_link({"email": email})
            )
            if show_result(result, "Check your email for the sign-in link"):
                if get_settings().app.debug_mode:
                    st.code(result.data)


def render_dashboard_page(components: AppComponents, user):
    """Summary cards, group balances and the most recent transactions."""
    st.title("📊 Dashboard")

    try:
        result = run_async(components.dashboard_flow.read(user))
    except AuthError:
        st.session_state.pop(TOKEN_KEY, None)
        st.rerun()
        return

    if not result.success:
        st.error(result.error)
        return
    view = result.data

    col1, col2 = st.columns(2)
    col1.metric("General limit", pen(view.summary.general_max))
    col2.metric("Total available", pen(view.summary.total_available))

    st.markdown("### Groups")
    if not view.balances:
        st.info("No groups yet. Create one on the Groups page.")
    for balance in view.balances:
        left, right = st.columns([3, 1])
        left.markdown(
            f"**{balance.group_name}** · {balance.percentage:.1f}%"
            + ("" if balance.can_spend else " · savings")
        )
        left.progress(min(max(balance.available_ratio, 0.0), 100.0) / 100)
        right.markdown(f"{pen(balance.available_amount)} / {pen(balance.max_amount)}")

    st.markdown("### Recent transactions")
    render_transaction_form(components, user, view.groups, key="dashboard_add")

    names = {group.id: group.name for group in view.groups}
    if not view.recent_transactions:
        st.info("No transactions yet.")
    for txn in view.recent_transactions:
        sign = "-" if txn.type == TransactionType.EXPENSE else "+"
        st.markdown(
            f"{txn.created_at:%Y-%m-%d} · {txn.concept} · "
            f"{names.get(txn.group_id, 'No group')} · {sign}{pen(txn.amount)}"
        )


def render_transaction_form(components: AppComponents, user, groups, key: str):
    """Add an income or expense, entered in PEN or USD."""
    with st.expander("➕ Add transaction"):
        with st.form(key):
            concept = st.text_input("Concept")
            col1, col2 = st.columns(2)
            amount = col1.number_input("Amount", min_value=0.0, step=1.0, format="%.2f")
            currency = col2.selectbox("Currency", [c.value for c in Currency])
            txn_type = st.radio(
                "Type",
                [t.value for t in TransactionType],
                horizontal=True,
                index=1,
            )
            group_id = st.selectbox(
                "Group",
                options=[None] + [group.id for group in groups],
                format_func=lambda gid: "No group" if gid is None else next(
                    group.name for group in groups if group.id == gid
                ),
            )
            if currency == Currency.USD.value:
                rate = components.rate_service.get_rate()
                st.caption(f"1 USD = {pen(rate)}")
            submitted = st.form_submit_button("Save")

        if submitted:
            result = run_async(components.transaction_flow.create(user, {
                "amount": amount,
                "currency": currency,
                "concept": concept,
                "type": txn_type,
                "group_id": group_id,
            }))
            if show_result(result, "Transaction saved"):
                st.rerun()


def render_transactions_page(components: AppComponents, user):
    """Full transaction list with edit and delete."""
    st.title("🧾 Transactions")

    groups = run_async(components.group_flow.list(user)).data or []
    render_transaction_form(components, user, groups, key="transactions_add")

    result = run_async(components.transaction_flow.list(user))
    if not result.success:
        st.error(result.error)
        return

    names = {group.id: group.name for group in groups}
    group_ids = [None] + [group.id for group in groups]

    search_col, group_col, type_col = st.columns([2, 1, 1])
    search = search_col.text_input("Search", placeholder="Concept or group")
    group_filter = group_col.selectbox(
        "Group filter",
        options=group_ids,
        format_func=lambda gid: "All groups" if gid is None else names[gid],
    )
    type_filter = type_col.selectbox(
        "Type filter",
        options=[None] + [t.value for t in TransactionType],
        format_func=lambda value: "All types" if value is None else value,
    )

    shown = filter_transactions(result.data, groups, search, group_filter, type_filter)
    if not shown:
        st.info("No transactions match the filters.")

    for txn in shown:
        label = (
            f"{txn.created_at:%Y-%m-%d} · {txn.concept} · "
            f"{txn.type.value} {pen(txn.amount)} · {names.get(txn.group_id, 'No group')}"
        )
        with st.expander(label):
            with st.form(f"edit_{txn.id}"):
                concept = st.text_input("Concept", value=txn.concept)
                amount = st.number_input("Amount (PEN)", value=txn.amount, min_value=0.0, format="%.2f")
                txn_type = st.radio(
                    "Type",
                    [t.value for t in TransactionType],
                    index=list(TransactionType).index(txn.type),
                    horizontal=True,
                )
                group_id = st.selectbox(
                    "Group",
                    options=group_ids,
                    index=group_ids.index(txn.group_id) if txn.group_id in group_ids else 0,
                    format_func=lambda gid: names.get(gid, "No group"),
                )
                col1, col2 = st.columns(2)
                save = col1.form_submit_button("Save")
                delete = col2.form_submit_button("Delete")

            if save:
                outcome = run_async(components.transaction_flow.update(user, txn.id, {
                    "amount": amount,
                    "concept": concept,
                    "type": txn_type,
                    "group_id": group_id,
                }))
                if show_result(outcome, "Transaction updated"):
                    st.rerun()
            if delete:
                outcome = run_async(components.transaction_flow.delete(user, txn.id))
                if show_result(outcome, "Transaction deleted"):
                    st.rerun()


def render_groups_page(components: AppComponents, user):
    """Create, edit and delete budget groups."""
    st.title("🗂️ Groups")

    with st.expander("➕ New group"):
        with st.form("new_group"):
            name = st.text_input("Name")
            percentage = st.number_input("Percentage", min_value=0.0, max_value=100.0, step=5.0)
            can_spend = st.checkbox("Can spend from this group", value=True)
            submitted = st.form_submit_button("Create")
        if submitted:
            result = run_async(components.group_flow.create(user, {
                "name": name,
                "percentage": percentage,
                "can_spend": can_spend,
            }))
            if show_result(result, "Group created"):
                st.rerun()

    result = run_async(components.group_flow.list(user))
    if not result.success:
        st.error(result.error)
        return

    total = sum(group.percentage for group in result.data)
    st.caption(f"Allocated: {total:.1f}% of the general limit")

    for group in result.data:
        with st.expander(f"{group.name} · {group.percentage:.1f}%"):
            with st.form(f"group_{group.id}"):
                name = st.text_input("Name", value=group.name)
                percentage = st.number_input(
                    "Percentage", value=group.percentage, min_value=0.0, max_value=100.0
                )
                can_spend = st.checkbox("Can spend from this group", value=group.can_spend)
                col1, col2 = st.columns(2)
                save = col1.form_submit_button("Save")
                delete = col2.form_submit_button("Delete (removes its transactions)")

            if save:
                outcome = run_async(components.group_flow.update(user, group.id, {
                    "name": name,
                    "percentage": percentage,
                    "can_spend": can_spend,
                }))
                if show_result(outcome, "Group updated"):
                    st.rerun()
            if delete:
                outcome = run_async(components.group_flow.delete(user, group.id))
                if show_result(outcome, "Group deleted"):
                    st.rerun()


def render_profile_page(components: AppComponents, user, token: str):
    """Name, email, general limit and password."""
    st.title("👤 Profile")

    profile = run_async(components.profile_flow.load(user)).data

    with st.form("profile"):
        full_name = st.text_input("Name", value=(profile.full_name or "") if profile else "")
        email = st.text_input("Email", value=user.email)
        general_limit = st.number_input(
            "General limit (PEN)",
            value=profile.general_limit if profile else 0.0,
            min_value=0.0,
            step=100.0,
        )
        submitted = st.form_submit_button("Save profile")
    if submitted:
        result = run_async(components.profile_flow.update(token, {
            "full_name": full_name,
            "email": email,
            "general_limit": general_limit,
        }))
        if show_result(result, "Profile updated successfully"):
            st.rerun()

    st.markdown("### Change password")
    with st.form("password"):
        current_password = st.text_input("Current password", type="password")
        new_password = st.text_input("New password", type="password")
        confirm_password = st.text_input("Confirm new password", type="password")
        submitted = st.form_submit_button("Update password")
    if submitted:
        result = run_async(components.auth_flow.update_password(token, {
            "current_password": current_password,
            "new_password": new_password,
            "confirm_password": confirm_password,
        }))
        show_result(result, "Password updated successfully")


def render_settings_page(components: AppComponents):
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")

    status = validate_all_settings()

    sections = [
        ("Database", "database"),
        ("Exchange rate provider", "exchange_rate"),
        ("Authentication", "auth"),
        ("Application", "app"),
    ]

    for name, key in sections:
        if status.get(key, False):
            st.success(f"✅ {name} - OK")
        else:
            error = status.get(f"{key}_error", "Not configured")
            st.error(f"❌ {name} - {error}")

    st.markdown("### Exchange rate")
    st.write(f"1 USD = {pen(components.rate_service.get_rate())}")
    if st.button("Refresh rate"):
        components.rate_service.cache.clear()
        st.rerun()

    st.markdown("---")
    st.markdown(
        "To configure the application, create a `.env` file. "
        "See `.env.example` for the available variables."
    )


if __name__ == "__main__":
    main()
