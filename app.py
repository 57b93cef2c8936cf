import os
import secrets
import traceback
import uuid

from dotenv import load_dotenv
from flask import Flask, request, jsonify, render_template, session
from flask_cors import CORS

import gemini_service
from imaging import load_image, to_data_url
from workflow import Workflow, WorkflowError, WorkflowStore

load_dotenv()

app = Flask(__name__)
app.secret_key = os.getenv("FLASK_SECRET_KEY") or secrets.token_hex(32)
# selfies arrive as base64 data URLs inside JSON
app.config["MAX_CONTENT_LENGTH"] = 20 * 1024 * 1024
CORS(app)

workflows = WorkflowStore(
    max_sessions=int(os.getenv("MAX_SESSIONS", 256)),
    ttl=float(os.getenv("SESSION_TTL_SECONDS", 3600)),
)

if not (os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")):
    print("[INIT] WARNING: GEMINI_API_KEY not set. Analysis and try-on will not work.")


def _current_workflow():
    if "sid" not in session:
        session["sid"] = uuid.uuid4().hex
    return workflows.get(session["sid"])


def _api_key_missing():
    try:
        gemini_service.get_api_key()
    except gemini_service.MissingApiKeyError as e:
        return jsonify({"error": str(e)}), 503
    return None


def _read_image_from_request():
    """Return the uploaded image as a data URL, from multipart or JSON."""
    if "image" in request.files:
        file = request.files["image"]
        return to_data_url(file.read(), file.content_type or "image/jpeg")
    payload = request.get_json(silent=True) or {}
    return payload.get("image")


# ---------------------------------------------------------------------------
# Flask Routes
# ---------------------------------------------------------------------------

@app.route("/")
def index():
    return render_template("index.html")


@app.route("/api/state", methods=["GET"])
def api_state():
    # reading state never allocates a session
    sid = session.get("sid")
    if sid is None or sid not in workflows:
        return jsonify(Workflow().snapshot())
    return jsonify(workflows.get(sid).snapshot())


@app.route("/api/image", methods=["POST"])
def api_image():
    """Accept a selfie from the file picker or camera and move to the crop step."""
    try:
        image = _read_image_from_request()
        if not image:
            return jsonify({"error": "No image provided"}), 400
        # reject anything Pillow can't open before it reaches the model
        load_image(image)

        wf = _current_workflow()
        wf.select_image(image)
        return jsonify(wf.snapshot())

    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except WorkflowError as e:
        return jsonify({"error": str(e)}), 409
    except Exception as e:
        traceback.print_exc()
        return jsonify({"error": str(e)}), 500


@app.route("/api/crop", methods=["POST"])
def api_crop():
    """Crop to the centered square and run the color analysis."""
    missing = _api_key_missing()
    if missing:
        return missing
    try:
        wf = _current_workflow()
        wf.confirm_crop()
        return jsonify(wf.snapshot())

    except WorkflowError as e:
        return jsonify({"error": str(e)}), 409
    except Exception as e:
        traceback.print_exc()
        return jsonify({"error": str(e)}), 500


@app.route("/api/restart", methods=["POST"])
def api_restart():
    """End the session's workflow and drop its images."""
    sid = session.get("sid")
    if sid is not None and sid in workflows:
        workflows.get(sid).restart()
        workflows.discard(sid)
        print(f"[FLOW] Session {sid[:8]} restarted, {len(workflows)} active")
    return jsonify(Workflow().snapshot())


@app.route("/api/visualize", methods=["POST"])
def api_visualize():
    """Try on one of the recommended colors."""
    missing = _api_key_missing()
    if missing:
        return missing
    try:
        payload = request.get_json(silent=True) or {}
        category = payload.get("category")
        index = payload.get("index")
        if not isinstance(category, str) or not isinstance(index, int) or isinstance(index, bool):
            return jsonify({"error": "category (str) and index (int) are required"}), 400

        wf = _current_workflow()
        analysis = wf.analysis
        if analysis is None:
            return jsonify({"error": "No analysis available"}), 409
        color = analysis.find_color(category, index)
        if color is None:
            return jsonify({"error": f"No color {index} in category '{category}'"}), 404

        wf.visualize(category, color)
        return jsonify(wf.snapshot())

    except WorkflowError as e:
        return jsonify({"error": str(e)}), 409
    except Exception as e:
        traceback.print_exc()
        return jsonify({"error": str(e)}), 500


@app.route("/api/toggle-original", methods=["POST"])
def api_toggle_original():
    try:
        wf = _current_workflow()
        wf.toggle_original()
        return jsonify(wf.snapshot())
    except WorkflowError as e:
        return jsonify({"error": str(e)}), 409


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    app.run(debug=False, host="0.0.0.0", port=port, threaded=True)
