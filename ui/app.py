"""Streamlit UI for chatting with an AI-enabled post.

- Sidebar controls (API URL, user id, post id, enable/disable AI chat, clear chat)
- Chat bubbles using st.chat_message
- Streams the answer from POST /posts/{post_id}/ai/ask (text/event-stream)
  and renders fragments as they arrive
"""
import json
import os
import time

import requests
import streamlit as st

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000").rstrip("/")

st.set_page_config(page_title="Post Chat", page_icon="💬", layout="wide")

# Initialize chat history
if "messages" not in st.session_state:
    # Each item: {"role": "user"|"assistant", "content": str}
    st.session_state.messages = []

st.title("Post Chat: ask the post")
st.caption("Answers are grounded in the post's own text, retrieved chunk by chunk.")

with st.sidebar:
    st.subheader("Settings")
    api_url = st.text_input("API Base URL", value=API_BASE_URL, help="Backend FastAPI base URL").rstrip("/")
    user_id = st.text_input("User ID", value=os.getenv("POSTCHAT_USER_ID", ""), help="Sent as X-User-ID")
    post_id = st.text_input("Post ID", value=os.getenv("POSTCHAT_POST_ID", ""))

    st.subheader("AI chat mode")
    col_on, col_off = st.columns(2)
    if col_on.button("Enable", disabled=not (user_id and post_id)):
        try:
            r = requests.post(f"{api_url}/posts/{post_id}/ai/enable", headers={"X-User-ID": user_id}, timeout=15)
            if r.ok and r.json().get("enabled"):
                st.success("Accepted. Embedding runs in the background.")
            elif r.ok:
                st.info("Nothing to do (already enabled, or you are not the author).")
            else:
                st.error(f"Request failed: {r.status_code} {r.text}")
        except requests.RequestException as e:
            st.error(f"Error calling API: {e}")
    if col_off.button("Disable", disabled=not (user_id and post_id)):
        try:
            r = requests.post(f"{api_url}/posts/{post_id}/ai/disable", headers={"X-User-ID": user_id}, timeout=15)
            if r.ok and r.json().get("disabled"):
                st.success("AI chat disabled.")
            elif r.ok:
                st.info("Nothing to do (already disabled, or you are not the author).")
            else:
                st.error(f"Request failed: {r.status_code} {r.text}")
        except requests.RequestException as e:
            st.error(f"Error calling API: {e}")

    if st.button("Clear chat"):
        st.session_state.messages = []
        st.rerun()


def health_check(url: str) -> bool:
    """Return True if the backend health endpoint responds OK."""
    try:
        r = requests.get(f"{url}/health", timeout=5)
        return r.ok
    except requests.RequestException as e:
        # Show the exception only as info to avoid alarming UX for transient issues.
        st.info(e)
        return False


def stream_answer(url: str, pid: str, uid: str, question: str):
    """Yield answer fragments from the SSE ask endpoint.

    Raises:
        RuntimeError: On a non-2xx response or a terminal error event.
    """
    with requests.post(
        f"{url}/posts/{pid}/ai/ask",
        headers={"X-User-ID": uid, "Accept": "text/event-stream"},
        json={"question": question},
        stream=True,
        timeout=(10, 120),
    ) as resp:
        if not resp.ok:
            raise RuntimeError(f"{resp.status_code} {resp.text}")
        event = "message"
        for line in resp.iter_lines(decode_unicode=True):
            if not line:
                event = "message"
                continue
            if line.startswith("event: "):
                event = line[len("event: "):]
                continue
            if not line.startswith("data: "):
                continue
            data = line[len("data: "):]
            if data == "[DONE]":
                return
            payload = json.loads(data)
            if event == "error":
                raise RuntimeError(payload.get("message", "answer failed"))
            yield payload.get("text", "")


ok = health_check(api_url)
if not ok:
    st.warning(f"Backend health check failed at {api_url}/health.")

# Render existing chat history
for m in st.session_state.messages:
    with st.chat_message(m["role"]):
        st.markdown(m.get("content", ""))
        if m.get("latency_ms") is not None:
            st.caption(f"Latency: {m['latency_ms']} ms")

prompt = st.chat_input("Ask something about this post...", disabled=not (ok and user_id and post_id))
if prompt:
    st.session_state.messages.append({"role": "user", "content": prompt})
    with st.chat_message("user"):
        st.markdown(prompt)

    with st.chat_message("assistant"):
        t0 = time.time()
        try:
            answer = st.write_stream(stream_answer(api_url, post_id, user_id, prompt))
            latency_ms = int((time.time() - t0) * 1000.0)
            st.caption(f"Latency: {latency_ms} ms")
            st.session_state.messages.append(
                {"role": "assistant", "content": answer or "_No answer returned._", "latency_ms": latency_ms}
            )
        except (requests.RequestException, RuntimeError, ValueError) as e:
            st.error(f"Error calling API: {e}")
