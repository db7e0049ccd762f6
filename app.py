import logging
import threading
import time
import uuid
from collections import OrderedDict

from flask import Flask, request, jsonify, session

import config
import gemini_service
from app_state import InvalidTransition, PipelineController
from key_host import EnvironmentKeyHost

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.secret_key = config.SECRET_KEY


class ControllerRegistry:
    """
    In-memory controllers keyed by session id with:
    - sliding TTL (an entry expires ttl_seconds after its last use)
    - a cap on live entries, evicting the least recently used first
    """

    def __init__(self, max_sessions, ttl_seconds):
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        # sid -> (expires_at, controller), oldest use first
        self._items = OrderedDict()

    def _purge_unlocked(self, now):
        while self._items:
            sid, (expires_at, _) = next(iter(self._items.items()))
            if expires_at > now and len(self._items) <= self.max_sessions:
                break
            del self._items[sid]
            logger.debug("Evicted session %s", sid[:8])

    def get_or_create(self, sid, factory):
        """Return (controller, created) for sid, touching its expiry."""
        now = time.monotonic()
        with self._lock:
            item = self._items.pop(sid, None)
            created = item is None or item[0] <= now
            controller = factory() if created else item[1]
            self._items[sid] = (now + self.ttl_seconds, controller)
            self._purge_unlocked(now)
            return controller, created

    def pop(self, sid):
        with self._lock:
            self._items.pop(sid, None)

    def clear(self):
        with self._lock:
            self._items.clear()

    def __len__(self):
        with self._lock:
            return len(self._items)

    def __contains__(self, sid):
        with self._lock:
            return sid in self._items


_controllers = ControllerRegistry(config.MAX_SESSIONS, config.SESSION_TTL)


def new_controller():
    return PipelineController(service=gemini_service, host=EnvironmentKeyHost())


async def get_controller():
    """Return this browser session's controller, creating it on first use."""
    sid = session.get("sid")
    if sid is None:
        sid = session["sid"] = uuid.uuid4().hex

    controller, created = _controllers.get_or_create(
        sid, app.config.get("CONTROLLER_FACTORY", new_controller)
    )

    if created:
        # Only checked once per session so a rejected key forces a new selection.
        await controller.check_api_key()
        logger.info("New session %s (key selected: %s)", sid[:8], controller.state.api_key_selected)
    return controller


def key_required(controller):
    if not controller.state.api_key_selected:
        return jsonify({"error": "Select an API key first"}), 403
    return None


@app.route("/")
def index():
    return HTML_PAGE


@app.route("/api/state")
async def get_state():
    controller = await get_controller()
    return jsonify(controller.snapshot())


@app.route("/api/key/select", methods=["POST"])
async def select_key():
    controller = await get_controller()
    await controller.select_api_key()
    return jsonify(controller.snapshot())


@app.route("/api/start", methods=["POST"])
async def start():
    controller = await get_controller()
    denied = key_required(controller)
    if denied:
        return denied

    try:
        controller.start_analysis()
    except InvalidTransition as e:
        return jsonify({"error": str(e)}), 409
    return jsonify(controller.snapshot())


@app.route("/api/analyze", methods=["POST"])
async def analyze():
    controller = await get_controller()
    denied = key_required(controller)
    if denied:
        return denied

    data = request.get_json(silent=True) or {}
    genre = data.get("genre", "")
    if not isinstance(genre, str):
        return jsonify({"error": "genre must be a string"}), 400

    try:
        await controller.analyze_genre(genre)
    except InvalidTransition as e:
        return jsonify({"error": str(e)}), 409
    return jsonify(controller.snapshot())


@app.route("/api/prototype", methods=["POST"])
async def prototype():
    controller = await get_controller()
    denied = key_required(controller)
    if denied:
        return denied

    data = request.get_json(silent=True) or {}
    index = data.get("index")
    if not isinstance(index, int) or isinstance(index, bool):
        return jsonify({"error": "index must be an integer"}), 400

    try:
        await controller.generate_prototype(index)
    except IndexError as e:
        return jsonify({"error": str(e)}), 400
    except InvalidTransition as e:
        return jsonify({"error": str(e)}), 409
    return jsonify(controller.snapshot())


@app.route("/api/keys", methods=["POST"])
async def keys():
    controller = await get_controller()
    data = request.get_json(silent=True) or {}
    key = data.get("key", "")
    if data.get("pressed"):
        controller.press_key(key)
    else:
        controller.release_key(key)
    return jsonify(controller.snapshot())


@app.route("/api/reset", methods=["POST"])
async def reset():
    sid = session.get("sid")
    if sid is not None:
        _controllers.pop(sid)
    controller = await get_controller()
    return jsonify(controller.snapshot())


HTML_PAGE = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>AI Game Idea &amp; Prototype Generator</title>
<style>
  *, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

  body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    background: #EAF2CE;
    color: #3805F2;
    min-height: 100vh;
  }

  .container {
    max-width: 960px;
    margin: 0 auto;
    padding: 48px 20px 80px;
    display: flex;
    flex-direction: column;
    gap: 40px;
  }

  .hidden { display: none !important; }

  h1 {
    font-size: 2.6rem;
    background: linear-gradient(90deg, #7D5CF2, #3805F2);
    -webkit-background-clip: text;
    background-clip: text;
    color: transparent;
    margin-bottom: 16px;
  }

  h2 { font-size: 1.7rem; text-align: center; margin-bottom: 20px; }
  h3 { font-size: 1.3rem; text-align: center; margin-bottom: 16px; }
  h5 { font-size: 0.95rem; margin-bottom: 8px; }

  .hero, .center { text-align: center; }
  .hero p { opacity: 0.8; font-size: 1.15rem; margin-bottom: 28px; }

  button {
    background: #3805F2;
    color: #EAF2CE;
    border: none;
    border-radius: 12px;
    padding: 12px 22px;
    font-size: 0.95rem;
    font-weight: 600;
    cursor: pointer;
    transition: background 0.15s, opacity 0.15s;
  }
  button:hover { background: #7D5CF2; }
  button:disabled { opacity: 0.5; cursor: not-allowed; }

  .genre-row {
    display: flex;
    gap: 12px;
    max-width: 480px;
    margin: 0 auto;
  }

  input[type=text] {
    flex: 1;
    background: rgba(174, 163, 217, 0.4);
    border: 1px solid #A691F2;
    border-radius: 12px;
    padding: 12px 16px;
    color: #3805F2;
    font-size: 0.95rem;
    outline: none;
  }
  input[type=text]:focus { box-shadow: 0 0 0 2px #3805F2; }

  .alert {
    max-width: 640px;
    margin: 16px auto 0;
    background: #fde2e2;
    border: 1px solid #f2a0a0;
    color: #9b1c1c;
    border-radius: 10px;
    padding: 12px 16px;
    font-size: 0.9rem;
  }

  .loading { display: flex; flex-direction: column; align-items: center; gap: 14px; color: #7D5CF2; }
  .spinner {
    width: 36px; height: 36px;
    border: 3px solid #A691F2;
    border-top-color: #3805F2;
    border-radius: 50%;
    animation: spin 0.8s linear infinite;
  }
  @keyframes spin { to { transform: rotate(360deg); } }

  .grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(240px, 1fr)); gap: 20px; }

  .card {
    background: #AEA3D9;
    border: 1px solid #A691F2;
    border-radius: 16px;
    padding: 20px;
  }
  .card h4 { margin-bottom: 10px; }
  .card ul { padding-left: 18px; line-height: 1.6; }

  details.card { padding: 0; }
  details.card summary { padding: 16px 20px; cursor: pointer; font-weight: 600; }
  details.card .body { padding: 0 20px 20px; display: flex; flex-direction: column; gap: 14px; }

  pre.tilemap {
    background: rgba(234, 242, 206, 0.5);
    border: 1px solid #A691F2;
    border-radius: 8px;
    padding: 8px;
    font-family: 'SF Mono', Menlo, monospace;
    font-size: 0.85rem;
    overflow-x: auto;
  }

  .frame {
    width: 100%;
    aspect-ratio: 16 / 9;
    max-height: 80vh;
    background: #3805F2;
    border-radius: 16px;
    overflow: hidden;
    border: 1px solid #A691F2;
  }
  .frame iframe { width: 100%; height: 100%; border: 0; }

  .controls-legend {
    display: flex; flex-wrap: wrap; justify-content: center; gap: 12px 24px;
    margin-top: 16px; font-size: 0.9rem;
  }
  kbd {
    background: #A691F2;
    color: #3805F2;
    border-radius: 6px;
    padding: 3px 8px;
    font-family: inherit;
    transition: transform 0.15s, background 0.15s, color 0.15s;
    display: inline-block;
  }
  kbd.active { background: #3805F2; color: #EAF2CE; transform: scale(1.1); }

  .key-prompt { max-width: 520px; margin: 80px auto; text-align: center; }
  .key-prompt p { margin-bottom: 20px; opacity: 0.9; }
  .key-prompt small { display: block; margin-top: 20px; opacity: 0.7; }
</style>
</head>
<body>
<div class="container">

  <div id="keyPrompt" class="card key-prompt hidden">
    <h1>Welcome!</h1>
    <p>To use the AI Game Generator, you need to select a Google AI API key. Put it in
       <code>GEMINI_API_KEY</code> (environment or <code>.env</code>) and press the button below.</p>
    <button id="selectKeyBtn">Select API Key</button>
    <small>Project usage is subject to billing. See the
      <a href="https://ai.google.dev/gemini-api/docs/billing" target="_blank" rel="noopener noreferrer">Gemini API billing documentation</a>.</small>
  </div>

  <div id="main" class="hidden">
    <section id="hero" class="hero">
      <h1>AI Game Idea &amp; Prototype Generator</h1>
      <p>Analyze trends, generate ideas, and test gameplay instantly.</p>
      <button id="startBtn">Start Analysis</button>
    </section>

    <section id="inputSection" class="hidden">
      <h2>Market Analysis</h2>
      <div class="genre-row">
        <input type="text" id="genreInput" placeholder="Enter Genre (e.g., 'Cozy Farming Sim')">
        <button id="analyzeBtn">Analyze Genre</button>
      </div>
      <div id="inputError" class="alert hidden"></div>
    </section>

    <section id="ideaSection" class="hidden">
      <div id="ideaLoading" class="loading hidden"><div class="spinner"></div><p id="ideaLoadingText"></p></div>
      <div id="analysisResult" class="hidden">
        <h3 id="analysisTitle"></h3>
        <div class="grid">
          <div class="card"><h4>Market Trends</h4><ul id="trendsList"></ul></div>
          <div class="card"><h4>Popular Mechanics</h4><ul id="mechanicsList"></ul></div>
          <div class="card"><h4>Monetization Patterns</h4><ul id="monetizationList"></ul></div>
        </div>
      </div>
      <div id="ideasResult" class="hidden" style="margin-top: 40px;">
        <h2>AI-Generated Game Ideas</h2>
        <div id="ideaError" class="alert hidden" style="margin-bottom: 16px;"></div>
        <div id="ideasList" style="display: flex; flex-direction: column; gap: 16px;"></div>
      </div>
    </section>

    <section id="prototypeSection" class="hidden">
      <div id="prototypeLoading" class="loading hidden">
        <div class="spinner"></div><p>Building your prototype... this might take a moment.</p>
      </div>
      <div id="prototypeResult" class="card hidden">
        <h4>Playable Prototype</h4>
        <div id="prototypeBody"></div>
      </div>
    </section>
  </div>
</div>

<script>
  const ORDER = ['HERO', 'ANALYSIS_INPUT', 'ANALYSIS_LOADING', 'IDEA_LOADING',
                 'IDEA_COMPLETE', 'PROTOTYPE_LOADING', 'PROTOTYPE_COMPLETE'];
  const CONTROL_KEYS = ['ArrowLeft', 'ArrowRight', 'Space', 'ArrowUp'];
  const $ = id => document.getElementById(id);
  let current = null;
  let renderedPrototype = null;
  let pollTimer = null;

  function at(stage) { return ORDER.indexOf(current.stage) >= ORDER.indexOf(stage); }
  function show(id, visible) { $(id).classList.toggle('hidden', !visible); }

  async function api(path, body) {
    const opts = body === undefined
      ? { method: 'GET' }
      : { method: 'POST', headers: { 'Content-Type': 'application/json' }, body: JSON.stringify(body) };
    const res = await fetch(path, opts);
    const data = await res.json();
    if (!res.ok || data.error && !data.stage) throw new Error(data.error || 'HTTP ' + res.status);
    return data;
  }

  function fillList(id, items) {
    const ul = $(id);
    ul.innerHTML = '';
    (items || []).forEach(text => {
      const li = document.createElement('li');
      li.textContent = text;
      ul.appendChild(li);
    });
  }

  function renderIdeas(levels) {
    const list = $('ideasList');
    list.innerHTML = '';
    levels.forEach((idea, i) => {
      const card = document.createElement('details');
      card.className = 'card';
      card.open = i === 0;
      card.innerHTML =
        '<summary>Game Idea #' + (i + 1) + '</summary>' +
        '<div class="body">' +
        '<div><h5>Level Description</h5><p style="white-space: pre-wrap"></p></div>' +
        '<div><h5>Tilemap</h5><pre class="tilemap"></pre></div>' +
        '<div class="center"><button>Generate Prototype for Idea #' + (i + 1) + '</button></div>' +
        '</div>';
      card.querySelector('p').textContent = idea.level_description;
      card.querySelector('pre').textContent = (idea.tilemap || []).map(r => r.join('')).join('\n');
      card.querySelector('button').addEventListener('click', () => generatePrototype(i));
      list.appendChild(card);
    });
  }

  function renderPrototype(result) {
    const body = $('prototypeBody');
    body.innerHTML = '';
    if (result.type === 'html') {
      const frame = document.createElement('div');
      frame.className = 'frame';
      const iframe = document.createElement('iframe');
      iframe.setAttribute('sandbox', 'allow-scripts');
      iframe.title = 'Game Prototype';
      iframe.srcdoc = result.content;
      frame.appendChild(iframe);
      body.appendChild(frame);

      const legend = document.createElement('div');
      legend.className = 'controls-legend';
      legend.setAttribute('aria-label', 'Game controls');
      legend.innerHTML =
        '<span><b>Move:</b> <kbd data-key="ArrowLeft">&larr;</kbd> <kbd data-key="ArrowRight">&rarr;</kbd></span>' +
        '<span><b>Jump:</b> <kbd data-key="Space">Space</kbd> / <kbd data-key="ArrowUp">&uarr;</kbd></span>';
      body.appendChild(legend);
    } else {
      const p = document.createElement('p');
      p.textContent = result.content;
      body.appendChild(p);
    }
  }

  function render(state) {
    current = state;
    show('keyPrompt', !state.api_key_selected);
    show('main', state.api_key_selected);
    if (!state.api_key_selected) return;

    const stage = state.stage;
    show('hero', stage === 'HERO');
    show('inputSection', at('ANALYSIS_INPUT'));
    $('genreInput').disabled = at('ANALYSIS_LOADING');
    $('analyzeBtn').disabled = at('ANALYSIS_LOADING');
    $('analyzeBtn').textContent = stage === 'ANALYSIS_LOADING' ? 'Analyzing...' : 'Analyze Genre';
    if (document.activeElement !== $('genreInput') && state.genre) $('genreInput').value = state.genre;

    const inputError = stage === 'ANALYSIS_INPUT' ? state.error : null;
    $('inputError').textContent = inputError || '';
    show('inputError', !!inputError);

    const loadingIdeas = stage === 'ANALYSIS_LOADING' || stage === 'IDEA_LOADING';
    show('ideaSection', at('ANALYSIS_LOADING'));
    show('ideaLoading', loadingIdeas);
    $('ideaLoadingText').textContent = stage === 'ANALYSIS_LOADING'
      ? 'Analyzing market trends...' : 'Generating brilliant game ideas...';

    show('analysisResult', !!state.analysis && at('IDEA_COMPLETE'));
    if (state.analysis) {
      $('analysisTitle').textContent = 'Analysis for "' + state.genre + '"';
      fillList('trendsList', state.analysis.trends);
      fillList('mechanicsList', state.analysis.mechanics);
      fillList('monetizationList', state.analysis.monetization);
    }

    show('ideasResult', !!state.levels && at('IDEA_COMPLETE'));
    if (state.levels && $('ideasList').childElementCount !== state.levels.length) renderIdeas(state.levels);
    const ideaError = stage === 'IDEA_COMPLETE' ? state.error : null;
    $('ideaError').textContent = ideaError || '';
    show('ideaError', !!ideaError);
    document.querySelectorAll('#ideasList button').forEach(b => b.disabled = stage === 'PROTOTYPE_LOADING');

    show('prototypeSection', at('PROTOTYPE_LOADING'));
    show('prototypeLoading', stage === 'PROTOTYPE_LOADING');
    const done = stage === 'PROTOTYPE_COMPLETE' && state.prototype;
    show('prototypeResult', !!done);
    if (done && renderedPrototype !== state.prototype.content) {
      renderedPrototype = state.prototype.content;
      renderPrototype(state.prototype);
    }
    document.querySelectorAll('kbd[data-key]').forEach(k => {
      k.classList.toggle('active', state.active_keys.includes(k.dataset.key));
    });
  }

  // Long requests block until the step finishes; polling shows the intermediate stages.
  function startPolling() {
    stopPolling();
    pollTimer = setInterval(async () => {
      try { render(await api('/api/state')); } catch (e) { /* next tick */ }
    }, 700);
  }
  function stopPolling() { clearInterval(pollTimer); pollTimer = null; }

  async function run(path, body) {
    startPolling();
    try {
      render(await api(path, body));
    } catch (e) {
      console.error(e);
      render(await api('/api/state'));
    } finally {
      stopPolling();
    }
  }

  function generatePrototype(index) {
    if (current.stage === 'PROTOTYPE_LOADING') return;
    renderedPrototype = null;
    run('/api/prototype', { index });
  }

  $('selectKeyBtn').addEventListener('click', () => run('/api/key/select', {}));
  $('startBtn').addEventListener('click', () => run('/api/start', {}));
  $('analyzeBtn').addEventListener('click', () => run('/api/analyze', { genre: $('genreInput').value }));
  $('genreInput').addEventListener('keydown', e => {
    if (e.key === 'Enter') { e.preventDefault(); $('analyzeBtn').click(); }
  });

  function trackKey(e, pressed) {
    if (!current || current.stage !== 'PROTOTYPE_COMPLETE') return;
    const key = e.key === ' ' ? 'Space' : e.key;
    if (!CONTROL_KEYS.includes(key)) return;
    e.preventDefault();
    if (e.repeat) return;
    api('/api/keys', { key, pressed }).then(render).catch(console.error);
  }
  window.addEventListener('keydown', e => trackKey(e, true));
  window.addEventListener('keyup', e => trackKey(e, false));

  api('/api/state').then(render).catch(e => console.error(e));
</script>
</body>
</html>
"""

if __name__ == "__main__":
    app.run(debug=True, port=config.PORT, threaded=True)
