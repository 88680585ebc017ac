import atexit
import re
import time
import uuid

import streamlit as st

from botchat.config import get_backend_config
from botchat.core.state import (
    AuthFormState,
    GateView,
    MessageViewState,
    WorkspaceState,
    resolve_gate,
)
from botchat.infra.background_client import ClientBridge, get_background_client_manager
from botchat.infra.logger import logger

# Telemetry logger for frontend render lifecycle
frontend_telemetry = logger.getChild("FrontendTelemetry")

AVATAR_STYLES = {
    "user": "👤",
    "assistant": "🤖"
}

APP_CONFIG = {
    "TITLE": "BotChat",
    "ICON": "💬",
    "LAYOUT": "wide",
}

MAX_PREVIEW_LENGTH = 40

DEVICE_KEY_PARAM = "sid"
DEVICE_KEY_PATTERN = re.compile(r"[0-9a-f]{32}")


def setup_page():
    """Configure standardized page layout and metadata"""
    st.set_page_config(
        page_title=APP_CONFIG["TITLE"],
        page_icon=APP_CONFIG["ICON"],
        layout=APP_CONFIG["LAYOUT"],
        initial_sidebar_state="expanded",
        menu_items={
            'Get Help': None,
            'Report a bug': None,
            'About': None
        }
    )

    st.markdown("""
    <style>
    .stApp {
        background-color: #0e1117 !important;
        color: #fafafa !important;
    }
    [data-testid="stSidebar"] {
        background-color: #1a1d24 !important;
    }
    [data-testid="stSidebar"] .stButton > button {
        text-align: left !important;
        justify-content: flex-start !important;
        border: 1px solid transparent !important;
        box-shadow: none !important;
    }
    .stChatMessage {
        background-color: #1a1d24 !important;
        border-color: #404552 !important;
    }
    .stChatInput textarea {
        background-color: #262a33 !important;
        color: #fafafa !important;
        border-radius: 999px !important;
    }
    .empty-state {
        text-align: center;
        padding: 20px 16px;
        color: #9aa0aa;
        font-size: 12px;
    }
    .chat-hint {
        text-align: center;
        margin-top: 30vh;
        color: #9aa0aa;
    }
    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}
    </style>
    """, unsafe_allow_html=True)


def _session_key() -> str:
    if "session_key" not in st.session_state:
        st.session_state.session_key = uuid.uuid4().hex
    return st.session_state.session_key


def _device_key() -> str:
    """Per-browser key carried in the URL; a reload restores the same saved session."""
    key = st.query_params.get(DEVICE_KEY_PARAM)
    if not key or not DEVICE_KEY_PATTERN.fullmatch(key):
        key = uuid.uuid4().hex
        st.query_params[DEVICE_KEY_PARAM] = key
    return key


def ensure_client_bridge() -> ClientBridge:
    """Ensure a background chat client exists for this browser session."""
    if "client_bridge" in st.session_state:
        return st.session_state.client_bridge

    bridge = get_background_client_manager().get_or_create(
        _session_key(), device_key=_device_key()
    )
    st.session_state.client_bridge = bridge
    st.session_state.client_connect_started = time.time()
    frontend_telemetry.info(
        "Background client status=%s for session=%s",
        "ready" if bridge.is_ready() else "pending",
        _session_key(),
    )
    return bridge


def _auth_form_state() -> AuthFormState:
    if "auth_form" not in st.session_state:
        st.session_state.auth_form = AuthFormState()
    return st.session_state.auth_form


def _workspace_state() -> WorkspaceState:
    if "workspace" not in st.session_state:
        st.session_state.workspace = WorkspaceState()
    return st.session_state.workspace


# Session gate renderers

def render_loading_placeholder(bridge: ClientBridge):
    """Shown while the auth status is still resolving; polls until it settles."""
    st.markdown("Loading...")
    time.sleep(0.2)
    st.rerun()


def render_auth_form(bridge: ClientBridge):
    form = _auth_form_state()

    with st.form("auth_form"):
        st.subheader(form.title)
        email = st.text_input("Email", key="auth_email", placeholder="Email")
        password = st.text_input("Password", key="auth_password", type="password", placeholder="Password")
        submitted = st.form_submit_button(form.submit_label, disabled=form.loading)

    if submitted:
        form.email = email
        form.password = password
        if form.start_submit():
            # Redraw with the disabled "Loading..." control, then send
            st.rerun()

    if form.loading:
        with st.spinner("Loading..."):
            succeeded = form.complete_submit(bridge)
        if succeeded and form.notice is None:
            # Auth status changed; let the gate pick the workspace
            st.session_state.pop("auth_form", None)
        st.rerun()

    if form.error:
        st.error(form.error)
    if form.notice:
        st.info(form.notice)

    if st.button(form.toggle_label, key="auth_toggle_btn", type="tertiary"):
        form.toggle_mode()
        st.rerun()


def render_workspace(bridge: ClientBridge):
    workspace = _workspace_state()
    setup_sidebar(bridge, workspace)

    active_chat_id = workspace.chat_list.active_chat_id
    if active_chat_id:
        render_message_view(bridge, workspace.message_view, active_chat_id)
    else:
        workspace.message_view.unbind()
        st.markdown('<div class="chat-hint">Select a chat or start a new one</div>', unsafe_allow_html=True)


GATE_RENDERERS = {
    GateView.PLACEHOLDER: render_loading_placeholder,
    GateView.AUTH_FORM: render_auth_form,
    GateView.WORKSPACE: render_workspace,
}


# Chat list

def _preview_label(text: str) -> str:
    if len(text) > MAX_PREVIEW_LENGTH:
        return text[:MAX_PREVIEW_LENGTH] + "..."
    return text


def setup_sidebar(bridge: ClientBridge, workspace: WorkspaceState):
    """Sidebar with the signed-in user, chat list and sign-out control"""
    chat_list = workspace.chat_list
    with st.sidebar:
        st.text_input("👤 Signed in as", value=bridge.get_email() or "", disabled=True)

        if st.button("➕ New Chat", key="new_chat_btn", use_container_width=True):
            with st.spinner("Creating chat..."):
                chat_id = chat_list.new_chat(bridge)
            if chat_id:
                frontend_telemetry.info("New chat %s selected", chat_id)
            st.rerun()

        st.divider()

        if not chat_list.loaded:
            with st.spinner("Loading chats..."):
                chat_list.ensure_loaded(bridge)

        if chat_list.error:
            st.warning(f"⚠️ {chat_list.error}")

        if chat_list.chats:
            for chat in chat_list.chats:
                is_selected = chat_list.is_active(chat.id)
                if st.button(
                    _preview_label(chat.preview),
                    key=f"chat_btn_{chat.id}",
                    use_container_width=True,
                    type="primary" if is_selected else "secondary",
                ):
                    chat_list.select(chat.id)
                    st.rerun()
        elif chat_list.loaded:
            st.markdown('''
            <div class="empty-state">
                <div>No chats yet</div>
                <div style="font-size: 11px; margin-top: 4px;">Start one with New Chat</div>
            </div>
            ''', unsafe_allow_html=True)

        st.divider()

        if st.button("⏪ Sign Out", key="sign_out_btn", use_container_width=True):
            with st.spinner("Signing out..."):
                workspace.sign_out(bridge)
            for key in ("workspace", "auth_form", "auth_email", "auth_password"):
                st.session_state.pop(key, None)
            st.rerun()


# Message view

@st.fragment(run_every=get_backend_config().message_poll_interval)
def render_message_list(bridge: ClientBridge, view: MessageViewState, chat_id: str):
    """Redrawn on a timer so pushed snapshots show up without user input."""
    # Also replaces a subscription that dropped since the last tick
    view.bind(bridge, chat_id)

    if view.loading:
        st.markdown("Loading messages...")
        st.session_state.messages_pending = True
        return

    if st.session_state.pop("messages_pending", False):
        # First snapshot arrived; rerun the whole page so the composer shows
        st.rerun(scope="app")

    if view.feed_error:
        st.warning(f"⚠️ Live updates interrupted, reconnecting: {view.feed_error}")

    for msg in view.messages:
        role = "user" if msg.from_user else "assistant"
        with st.chat_message(role, avatar=AVATAR_STYLES[role]):
            st.markdown(msg.content)

    if view.awaiting_reply:
        st.caption("Waiting for the bot to reply...")
    if view.error:
        st.error(f"❌ {view.error}")


def render_message_view(bridge: ClientBridge, view: MessageViewState, chat_id: str):
    render_message_list(bridge, view, chat_id)

    if view.loading:
        return

    prompt = st.chat_input("Type a message...", key="chat_input")
    if prompt:
        view.composer = prompt
        sent = view.send(bridge)
        frontend_telemetry.debug("Message send to chat %s finished (sent=%s)", chat_id, sent)
        # Show the persisted message and the pending reply right away
        st.rerun()


def run_frontend():
    """Main function to run the Streamlit frontend"""
    render_start = time.perf_counter()
    setup_page()

    bridge = ensure_client_bridge()
    client_error = bridge.get_error()
    if client_error:
        frontend_telemetry.error(
            "Client bridge error after %.3fs: %s",
            time.perf_counter() - render_start,
            client_error,
        )
        st.error(f"Unable to connect to chat backend: {client_error}")
        st.stop()

    view = resolve_gate(bridge.auth_status())
    frontend_telemetry.debug(
        "Session gate resolved to %s in %.3fs",
        view.value,
        time.perf_counter() - render_start,
    )
    GATE_RENDERERS[view](bridge)


def cleanup():
    """Stop every background worker when the server process exits"""
    get_background_client_manager().shutdown_all()


# Module import is cached across reruns: registered once per process
atexit.register(cleanup)
