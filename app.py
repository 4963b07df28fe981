import cv2  # OpenCV for JPEG encoding of the video feed
from flask import Flask, render_template, Response, send_from_directory, jsonify  # Flask web framework
from flask_socketio import SocketIO  # For real-time communication with clients
from vigilance_video import VigilanceVideoProcessor  # Frame driver feeding the vigilance logic
from config import OUTPUT_DIR
import time  # For timing and intervals

app = Flask(__name__)
# Initialize SocketIO for real-time communication
socketio = SocketIO(app)
# Create the video processor instance
processor = VigilanceVideoProcessor()

@app.route('/')
def index():
    """Render the main dashboard page."""
    return render_template('index.html')

def gen():
    """
    Video frame generator for streaming to the client.
    Emits vigilance updates and new alerts via SocketIO at regular intervals.
    Yields JPEG-encoded frames for the video feed.
    """
    last_state_emit = 0  # Last time the vigilance state was emitted
    state_emit_interval = 0.1  # Interval (seconds) between state updates
    while not processor.shutdown_event.is_set():
        frame = processor.get_current_frame()  # Get the latest video frame
        if frame is None:
            time.sleep(0.01)
            continue  # Skip if no frame is available

        current_time = time.time()
        # Emit the vigilance snapshot at the specified interval
        if current_time - last_state_emit >= state_emit_interval:
            socketio.emit('update_vigilance', processor.get_vigilance())
            last_state_emit = current_time

        # Emit new alerts to the client
        for alert in processor.get_new_alerts():
            socketio.emit('new_alert', alert)

        # Encode the frame as JPEG and yield for streaming
        ret, buffer = cv2.imencode('.jpg', frame, [int(cv2.IMWRITE_JPEG_QUALITY), 80])
        if not ret:
            continue
        yield (b'--frame\r\n'
               b'Content-Type: image/jpeg\r\n\r\n' + buffer.tobytes() + b'\r\n')

@app.route('/video_feed')
def video_feed():
    """Route for streaming the video feed to the client."""
    return Response(gen(),
                    mimetype='multipart/x-mixed-replace; boundary=frame')

@app.route('/dismiss/<alert_id>', methods=['POST'])
def dismiss(alert_id):
    """Mark an alert as dismissed by the driver."""
    if not processor.dismiss_alert(alert_id):
        return jsonify({"error": f"unknown alert {alert_id}"}), 404
    return jsonify({"id": alert_id, "dismissed": True})

@app.route('/audio_played/<alert_id>', methods=['POST'])
def audio_played(alert_id):
    """Called by the page once it has sounded an alert."""
    if not processor.mark_audio_played(alert_id):
        return jsonify({"error": f"unknown alert {alert_id}"}), 404
    return jsonify({"id": alert_id, "audio_played": True})

@app.route('/end_session')
def end_session():
    """Route to end the driving session and release resources."""
    summary = processor.end_session()
    processor.release()
    return render_template("end.html", summary=summary)


@app.route('/download')
def download():
    """Download the session report PDF from the output directory."""
    return send_from_directory(OUTPUT_DIR, "vigilance_report.pdf", as_attachment=True)

if __name__ == "__main__":
    # Main entry point: start the Flask app with SocketIO
    try:
        socketio.run(app, host='0.0.0.0', port=5000, debug=False)
    finally:
        # Ensure resources are released on shutdown
        processor.release()
