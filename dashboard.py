import os
from datetime import date

import pandas as pd
import streamlit as st

from config import get_settings
from utils.formatting import format_balance, format_money
from utils.ledger_client import LedgerAPIError, LedgerClient, to_decimal

settings = get_settings()

st.set_page_config(page_title="Expense Tracker", page_icon="🧾")
st.title("Expense Tracker")
st.caption("Keep track of your shared expenses")

# The identity provider's proxy supplies the user id; locally it is typed in
user_id = st.sidebar.text_input("Signed in as", value=os.getenv("LEDGER_USER_ID", "")).strip()
if not user_id:
    st.info("Sign in to your account to see your expenses.")
    st.stop()

client = LedgerClient(settings.ledger_api_url, user_id, settings.user_id_header)
state = st.session_state


def notify(icon: str, message: str):
    # Shown on the next run, so messages survive st.rerun()
    state.setdefault("notices", []).append((icon, message))


def refresh():
    try:
        state.ledger = client.ledger()
        state.ledger_owner = user_id
    except LedgerAPIError as e:
        # Keep showing the last good ledger
        st.toast(f"Failed to fetch expenses: {e}", icon="⚠️")


def apply_change(result: dict, message: str):
    """Take the ledger returned by a write, or keep the old one if the server could not refresh it."""
    if result.get("ledger") is None:
        notify("⚠️", f"{message}, but the ledger could not be refreshed. Use Refresh to reload.")
    else:
        state.ledger = result["ledger"]
        notify("✅", message)


if state.get("ledger_owner") != user_id:
    state.ledger = {"expenses": [], "total_balance": "0.00", "friend_balances": []}
    state.settle_request = None
    refresh()
elif st.sidebar.button("Refresh"):
    refresh()

for icon, message in state.pop("notices", []):
    st.toast(message, icon=icon)

ledger = state.ledger
# Friend whose settlement runs at the end of this script run
pending_settlement = state.get("settle_request")

st.metric("Total Expenses", format_money(to_decimal(ledger["total_balance"])))

# New Expense Form
st.header("New Expense")
with st.form("new_expense"):
    col1, col2 = st.columns(2)
    friend_name = col1.text_input("Friend's Name", placeholder="Enter your friend's name")
    amount = col2.text_input("Amount ($)", placeholder="0.00")
    expense_date = st.date_input("Date", value=date.today())
    direction = st.radio("Type", options=["GIVEN", "RECEIVED"], horizontal=True)
    description = st.text_area("Description", placeholder="What was this expense for?")
    if st.form_submit_button("Add Expense"):
        try:
            result = client.add_expense(
                friend_name, amount, direction, expense_date.isoformat(), description
            )
        except LedgerAPIError as e:
            st.error(f"Failed to add expense: {e}")
        else:
            apply_change(result, "Expense added successfully")
            st.rerun()

# Friend Totals
st.header("Friend Totals")
if not ledger["expenses"]:
    st.info("No expenses recorded yet. Add your first expense above!")
else:
    cols = st.columns(2)
    for i, friend in enumerate(ledger["friend_balances"]):
        balance = to_decimal(friend["balance"])
        with cols[i % 2].container(border=True):
            st.subheader(friend["friend_name"])
            st.markdown(format_balance(balance))
            clicked = st.button(
                "Clear",
                key=f"settle_{i}",
                disabled=pending_settlement is not None or balance == 0,
            )
            if clicked and pending_settlement is None:
                # Rerun so every Clear button renders disabled while the request runs
                state.settle_request = friend["friend_name"]
                st.rerun()

# Expense History
st.header("Expense History")
if not ledger["expenses"]:
    st.info("No expenses recorded yet. Add your first expense above!")
else:
    history = pd.DataFrame(ledger["expenses"])
    history["date"] = pd.to_datetime(history["date"]).dt.date
    history["description"] = history["description"].replace("", "No description")
    history["amount"] = history["amount"].map(lambda a: format_money(to_decimal(a)))
    st.dataframe(
        history[["date", "friend_name", "description", "type", "amount"]],
        hide_index=True,
        use_container_width=True,
    )

    with st.expander("Edit or delete an expense"):
        by_id = {e["id"]: e for e in ledger["expenses"]}
        selected_id = st.selectbox(
            "Expense",
            options=list(by_id),
            format_func=lambda i: f"{by_id[i]['date'][:10]} · {by_id[i]['friend_name']} · {format_money(to_decimal(by_id[i]['amount']))}",
        )
        selected = by_id[selected_id]
        with st.form(f"edit_{selected_id}"):
            new_name = st.text_input("Friend's Name", value=selected["friend_name"])
            new_amount = st.text_input("Amount ($)", value=str(selected["amount"]))
            new_date = st.date_input("Date", value=date.fromisoformat(selected["date"][:10]))
            new_type = st.radio(
                "Type",
                options=["GIVEN", "RECEIVED"],
                index=0 if selected["type"] == "GIVEN" else 1,
                horizontal=True,
            )
            new_description = st.text_area("Description", value=selected["description"])
            save, delete = st.columns(2)
            if save.form_submit_button("Save changes"):
                try:
                    result = client.update_expense(
                        selected_id,
                        friend_name=new_name,
                        amount=new_amount,
                        date=new_date.isoformat(),
                        type=new_type,
                        description=new_description,
                    )
                except LedgerAPIError as e:
                    st.error(f"Failed to update expense: {e}")
                else:
                    apply_change(result, "Expense updated")
                    st.rerun()
            if delete.form_submit_button("Delete"):
                try:
                    result = client.delete_expense(selected_id)
                except LedgerAPIError as e:
                    st.error(f"Failed to delete expense: {e}")
                else:
                    apply_change(result, "Expense deleted")
                    st.rerun()

if pending_settlement is not None:
    try:
        apply_change(client.settle(pending_settlement), f"Balance with {pending_settlement} cleared")
    except LedgerAPIError as e:
        notify("⚠️", f"Failed to clear balance: {e}")
    finally:
        state.settle_request = None
    st.rerun()
