"""Session state helpers for Streamlit."""
from __future__ import annotations

import streamlit as st

from dermacheck.context import AppContext
from dermacheck.services.analysis_workflow import AnalysisWorkflow


def init_session_state() -> None:
    defaults = {
        "app_context": None,
        "workflow": None,
        "flash": None,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value

    if st.session_state.app_context is None:
        ctx = AppContext.create()
        ctx.init()
        st.session_state.app_context = ctx
        st.session_state.workflow = ctx.new_workflow()


def get_context() -> AppContext:
    return st.session_state.app_context


def get_workflow() -> AnalysisWorkflow:
    return st.session_state.workflow


def set_flash(kind: str, message: str) -> None:
    st.session_state.flash = (kind, message)


def pop_flash():
    flash = st.session_state.flash
    st.session_state.flash = None
    return flash
