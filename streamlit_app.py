# streamlit_app.py
import streamlit as st
import os
import threading
import time
import queue
from client_app.client import Client
from common.protocol import HOST as DEFAULT_HOST, PORT as DEFAULT_PORT, SAVE_RAW, SAVE_STRIPPED, ENCODING

CLIENT_DOWNLOADS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'client_downloads')
MAX_CONCURRENT_FETCHES = 5

st.set_page_config(page_title="Directory Server Client", layout="wide")

# --- Session State Initialization ---
if 'ui_client_instance' not in st.session_state:  # For LIST and raw commands
    st.session_state.ui_client_instance = None
if 'server_host' not in st.session_state:
    st.session_state.server_host = DEFAULT_HOST
if 'server_port' not in st.session_state:
    st.session_state.server_port = DEFAULT_PORT
if 'listing' not in st.session_state:
    st.session_state.listing = ""
if 'last_raw_answer' not in st.session_state:
    st.session_state.last_raw_answer = ""
if 'fetch_status' not in st.session_state:  # filename -> status dict
    st.session_state.fetch_status = {}
if 'log_messages' not in st.session_state:
    st.session_state.log_messages = []
if 'update_queue' not in st.session_state:
    st.session_state.update_queue = queue.Queue()
if 'active_fetch_threads' not in st.session_state:
    st.session_state.active_fetch_threads = {}


# --- Helper Functions ---
def add_log_to_queue(q, message_text):
    timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
    q.put({'type': 'log', 'message': f"[{timestamp}] {message_text}"})


def fetch_file_worker(host, port, filename, save_path, save_policy, q):
    """Fetch ONE file over its own connection so the UI channel stays free."""
    q.put({'type': 'fetch_init', 'filename': filename})
    worker_client = Client(host, port, save_policy=save_policy)
    connected, conn_msg = worker_client.connect()
    if not connected:
        q.put({'type': 'fetch_result', 'filename': filename, 'frame': None, 'message': conn_msg})
        add_log_to_queue(q, f"GET worker ({filename}): connect failed: {conn_msg}")
        return

    received = [0]

    def on_chunk(part):
        received[0] += len(part)
        q.put({'type': 'fetch_progress', 'filename': filename, 'received': received[0]})

    frame, msg = worker_client.request_file(filename, save_path, chunk_callback=on_chunk)
    q.put({'type': 'fetch_result', 'filename': filename, 'frame': frame, 'message': msg})
    add_log_to_queue(q, f"GET worker ({filename}): {msg}")
    worker_client.disconnect(send_exit_cmd=True)


def process_update_queue():
    processed = False
    while True:
        try:
            update = st.session_state.update_queue.get_nowait()
        except queue.Empty:
            break
        processed = True
        filename = update.get('filename')
        if update['type'] == 'log':
            st.session_state.log_messages.insert(0, update['message'])
            del st.session_state.log_messages[20:]
        elif update['type'] == 'fetch_init':
            st.session_state.fetch_status[filename] = {'received': 0, 'done': False, 'frame': None,
                                                       'message': 'Connecting...'}
        elif update['type'] == 'fetch_progress':
            status = st.session_state.fetch_status.setdefault(filename, {'done': False, 'frame': None})
            status['received'] = update['received']
            status['message'] = f"{update['received']} bytes received"
        elif update['type'] == 'fetch_result':
            status = st.session_state.fetch_status.setdefault(filename, {'received': 0})
            status.update({'done': True, 'frame': update['frame'], 'message': update['message']})
            st.session_state.active_fetch_threads.pop(filename, None)
    return processed


# --- UI ---
st.title("📁 Directory Server Client")
processed_updates = process_update_queue()

with st.sidebar:
    st.header("Connection")
    st.session_state.server_host = st.text_input("Server Host", value=st.session_state.server_host)
    st.session_state.server_port = st.number_input("Server Port", value=st.session_state.server_port, min_value=1,
                                                   max_value=65535, step=1)

    if not st.session_state.ui_client_instance:
        if st.button("🔗 Connect to Server"):
            client = Client(st.session_state.server_host, int(st.session_state.server_port))
            connected, msg = client.connect()
            add_log_to_queue(st.session_state.update_queue, msg)
            if connected:
                st.session_state.ui_client_instance = client
                st.rerun()
            else:
                st.error(msg)
    else:
        st.success(f"✅ Connected to {st.session_state.server_host}:{st.session_state.server_port}")
        st.code(st.session_state.ui_client_instance.welcome, language=None)
        if st.button("🔌 Disconnect (EXIT)"):
            msg = st.session_state.ui_client_instance.disconnect(send_exit_cmd=True)
            add_log_to_queue(st.session_state.update_queue, msg)
            st.session_state.ui_client_instance = None
            st.session_state.listing = ""
            st.rerun()

    st.markdown("---")
    st.subheader("📜 Client Log")
    with st.container(height=200):
        for msg_text in st.session_state.log_messages:
            st.caption(msg_text)

if not st.session_state.ui_client_instance:
    st.info("Please connect to the server using the sidebar.")
else:
    col1, col2 = st.columns([2, 3])
    with col1:
        st.subheader("📄 Server Files")
        if st.button("🔄 LIST"):
            text, msg = st.session_state.ui_client_instance.request_list()
            if text is not None:
                st.session_state.listing = text
            else:
                st.error(msg)
            add_log_to_queue(st.session_state.update_queue, f"LIST: {msg}")
        if st.session_state.listing:
            st.code(st.session_state.listing, language=None)

        st.subheader("⬇️ GET")
        filename = st.text_input("Remote file name")
        save_locally = st.checkbox("Save to downloads folder")
        strip_frame = st.checkbox("Strip header/footer when saving", disabled=not save_locally)
        if st.button("Fetch") and filename:
            active = sum(1 for t in st.session_state.active_fetch_threads.values() if t.is_alive())
            if active >= MAX_CONCURRENT_FETCHES:
                st.warning(f"Max concurrent fetches ({MAX_CONCURRENT_FETCHES}) reached.")
            else:
                save_path = None
                if save_locally:
                    os.makedirs(CLIENT_DOWNLOADS_DIR, exist_ok=True)
                    save_path = os.path.join(CLIENT_DOWNLOADS_DIR, os.path.basename(filename))
                thread = threading.Thread(
                    target=fetch_file_worker,
                    args=(st.session_state.server_host, int(st.session_state.server_port), filename,
                          save_path, SAVE_STRIPPED if strip_frame else SAVE_RAW,
                          st.session_state.update_queue),
                    daemon=True,
                )
                st.session_state.active_fetch_threads[filename] = thread
                thread.start()
                st.rerun()

        st.subheader("⌨️ Raw command")
        raw_line = st.text_input("Command line", placeholder="LIST")
        if st.button("Send") and raw_line:
            text, msg = st.session_state.ui_client_instance.request_raw(raw_line)
            st.session_state.last_raw_answer = text if text is not None else msg
            add_log_to_queue(st.session_state.update_queue, f"RAW '{raw_line}': {msg}")
            if st.session_state.ui_client_instance.client_socket is None:  # EXIT or dropped connection
                st.session_state.ui_client_instance = None
                st.session_state.listing = ""
                st.rerun()
        if st.session_state.last_raw_answer:
            st.code(st.session_state.last_raw_answer, language=None)

    with col2:
        st.subheader("📥 Responses")
        if not st.session_state.fetch_status:
            st.caption("No GET requests yet.")
        for name, status in st.session_state.fetch_status.items():
            st.markdown(f"**{name}**")
            if not status.get('done'):
                st.caption(status.get('message', ''))
            elif status.get('frame') is None:
                st.error(status.get('message', 'Failed'), icon="🔥")
            else:
                st.success(status.get('message', ''), icon="✅")
                st.code(status['frame'].decode(ENCODING, errors='replace'), language=None)

    any_thread_alive = any(t.is_alive() for t in st.session_state.active_fetch_threads.values())
    if processed_updates or not st.session_state.update_queue.empty() or any_thread_alive:
        time.sleep(0.1)
        st.rerun()
