"""Streamlit client for DermaCheck skin-condition triage."""
from __future__ import annotations

import streamlit as st

from dermacheck.context import AppContext
from dermacheck.core.errors import AuthError, DermaCheckError
from dermacheck.schemas.analysis import AnalysisResult, Diagnosis
from dermacheck.services.analysis_workflow import AnalysisWorkflow, WorkflowState
from dermacheck.services.remote_client import ACCEPTED_IMAGE_TYPES
from dermacheck.streamlit_app.state import get_context, get_workflow, init_session_state, pop_flash, set_flash

# Extensions for every format the client accepts; JPEG also ships as .jpg.
UPLOAD_EXTENSIONS = ["jpg"] + [fmt.lower() for fmt in ACCEPTED_IMAGE_TYPES]

DIAGNOSIS_STYLE = {
    Diagnosis.NORMAL: st.success,
    Diagnosis.CHICKENPOX: st.warning,
    Diagnosis.MEASLES: st.warning,
    Diagnosis.MONKEYPOX: st.error,
}


def render_result(result: AnalysisResult, image_url: str | None = None) -> None:
    DIAGNOSIS_STYLE[result.diagnosis](f"**Diagnosis:** {result.diagnosis.value}")
    if image_url:
        st.image(image_url, width=320)
    if result.assessment:
        st.markdown(result.assessment)
    col1, col2 = st.columns(2)
    with col1:
        st.subheader("Key features")
        for feature in result.key_features:
            st.markdown(f"- {feature}")
    with col2:
        st.subheader("Recommendations")
        for rec in result.recommendations:
            st.markdown(f"- {rec}")
    st.caption("This is a screening aid, not a medical diagnosis. Consult a healthcare professional.")


def render_auth(ctx: AppContext) -> None:
    st.header("Account")
    if ctx.session.identity:
        st.write(f"Signed in as **{ctx.session.identity.display_name}** ({ctx.session.identity.email})")
        if st.button("Log out"):
            ctx.session.logout()
            set_flash("info", "Logged out")
            st.rerun()
        return

    col1, col2 = st.columns(2)
    with col1:
        st.subheader("Login")
        with st.form("login_form"):
            email = st.text_input("Email", key="login_email")
            password = st.text_input("Password", type="password", key="login_pass")
            if st.form_submit_button("Login"):
                try:
                    identity = ctx.session.login(email, password)
                    set_flash("success", f"Welcome back, {identity.display_name}")
                    st.rerun()
                except AuthError as e:
                    st.error(e.message)

    with col2:
        st.subheader("Register")
        with st.form("register_form"):
            name = st.text_input("Full name", key="reg_name")
            email = st.text_input("Email", key="reg_email")
            password = st.text_input("Password", type="password", key="reg_pass")
            if st.form_submit_button("Register"):
                try:
                    result = ctx.session.register(name, email, password)
                except AuthError as e:
                    st.error(e.message)
                else:
                    if result.pending_confirmation:
                        st.info("Please check your email to confirm your account before signing in.")
                    else:
                        set_flash("success", "Account created")
                        st.rerun()


def render_analyzer(ctx: AppContext, workflow: AnalysisWorkflow) -> None:
    st.header("Skin assessment")
    if not ctx.remote.check_connection():
        st.warning(f"The analysis server at {ctx.remote.base_url} is not reachable right now.")

    uploaded = st.file_uploader("Upload a clear photo of the affected area", type=UPLOAD_EXTENSIONS)
    # The workflow drops its image when the user changes; pick the upload up again.
    if uploaded is not None and (st.session_state.get("uploaded_id") != uploaded.file_id or not workflow.has_image):
        st.session_state.uploaded_id = uploaded.file_id
        workflow.select_image(uploaded.getvalue(), uploaded.name)
    if uploaded is not None:
        st.image(uploaded, width=320)

    if st.button("Analyze", disabled=not workflow.can_submit):
        with st.spinner("Analyzing image..."):
            try:
                workflow.submit()
            except DermaCheckError as e:
                st.error(e.message)

    snapshot = workflow.snapshot
    if snapshot.state is WorkflowState.FAILED:
        st.error(snapshot.error.message)
    elif snapshot.state is WorkflowState.SUCCEEDED:
        render_result(snapshot.submission.analysis, snapshot.submission.image_url)
        if snapshot.upsell:
            st.info("Create a free account to keep a history of your scans.")

    if snapshot.state in (WorkflowState.SUCCEEDED, WorkflowState.FAILED) and st.button("Start over"):
        workflow.reset()
        st.session_state.uploaded_id = None
        st.rerun()


def render_history(ctx: AppContext) -> None:
    st.header("History")
    if not ctx.session.identity:
        st.info("Login first.")
        return
    if st.button("Refresh"):
        ctx.history.refresh(ctx.session.identity.id)

    snapshot = ctx.history.snapshot()
    if snapshot.error is not None:
        st.error(f"Could not load history: {snapshot.error.message}")
        return
    if snapshot.is_empty:
        st.info("No scans yet.")
        return

    for entry in snapshot.entries:
        with st.expander(f"{entry.created_at:%Y-%m-%d %H:%M} - {entry.result.diagnosis.value}"):
            render_result(entry.result, entry.image_url)


def render_profile(ctx: AppContext) -> None:
    st.header("Profile")
    identity = ctx.session.identity
    if not identity:
        st.info("Login first.")
        return

    stats = ctx.history.stats()
    col1, col2, col3 = st.columns(3)
    col1.metric("Total scans", stats.total)
    col2.metric("Conditions detected", stats.non_normal)
    col3.metric("Monkeypox", stats.monkeypox)

    try:
        profile = ctx.load_profile() or identity.profile
    except DermaCheckError as e:
        st.error(e.message)
        profile = identity.profile

    with st.form("profile_form"):
        full_name = st.text_input("Full name", value=profile.full_name or identity.display_name)
        age = st.number_input("Age", min_value=0, max_value=130, value=profile.age or 0)
        genders = ["", "Male", "Female"]
        gender = st.selectbox("Gender", genders, index=genders.index(profile.gender) if profile.gender in genders else 0)
        skin_type = st.text_input("Skin type", value=profile.skin_type or "")
        phone = st.text_input("Phone", value=profile.phone or "")
        st.text_input("Role", value=profile.role or "", disabled=True)
        if st.form_submit_button("Save"):
            changes = {
                "full_name": full_name or None,
                "age": int(age) or None,
                "gender": gender or None,
                "skin_type": skin_type or None,
                "phone": phone or None,
            }
            try:
                ctx.update_profile(changes)
                set_flash("success", "Profile updated")
                st.rerun()
            except DermaCheckError as e:
                st.error(e.message)


def main():
    st.set_page_config(page_title="DermaCheck", layout="wide")
    init_session_state()
    ctx = get_context()
    workflow = get_workflow()

    flash = pop_flash()
    if flash:
        getattr(st, flash[0])(flash[1])

    page = st.sidebar.radio("Navigation", ["Analyze", "History", "Profile", "Account"])

    if page == "Analyze":
        render_analyzer(ctx, workflow)
    elif page == "History":
        render_history(ctx)
    elif page == "Profile":
        render_profile(ctx)
    elif page == "Account":
        render_auth(ctx)


if __name__ == "__main__":
    main()
