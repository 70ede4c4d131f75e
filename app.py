"""
Flask Web Application for the Clinical Documentation Workflow

Thin HTTP transport over PipelineOrchestrator. Routes translate requests
into stage calls and map workflow errors to status codes; no route reads
or writes artifacts except through the orchestrator or its store.
"""

import logging
import os
import threading
from datetime import datetime

from dotenv import load_dotenv
from flask import Flask, current_app, jsonify, request, send_file
from werkzeug.exceptions import RequestEntityTooLarge

load_dotenv()

from clinic_workflow import config
from clinic_workflow.artifacts import ArtifactKey
from clinic_workflow.core.ocr_processor import assess_text_quality, is_supported_image
from clinic_workflow.core.pipeline import PipelineOrchestrator
from clinic_workflow.core.transcriber import is_supported_audio
from clinic_workflow.errors import (
    CollaboratorTimeout,
    IncompleteWorkflow,
    InvalidStageInput,
    PrerequisiteMissing,
    WorkflowError,
)
from clinic_workflow.persistence import ArtifactStore
from clinic_workflow.utils.helpers import generate_session_id, generate_upload_filename
from clinic_workflow.utils.soap_templates import list_templates

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

ORCHESTRATOR_EXTENSION = "clinic_workflow.orchestrator"

_build_lock = threading.Lock()


def build_orchestrator():
    """
    Construct the production orchestrator from config.

    Loads the speech and language models (expensive, ~30 seconds),
    so it runs once per process on first use.
    """
    from clinic_workflow.core.ocr_processor import OCRProcessor
    from clinic_workflow.core.pdf_renderer import PDFRenderer
    from clinic_workflow.core.soap_generator import SoapGenerator
    from clinic_workflow.core.transcriber import AudioTranscriber
    from clinic_workflow.utils.hf_client import HuggingFaceClient

    logger.info("Initializing collaborators (this takes ~30 seconds)...")

    hf_client = HuggingFaceClient(
        model_name=config.LLM_MODEL_NAME,
        load_in_4bit=config.LLM_LOAD_IN_4BIT,
        device=config.LLM_DEVICE
    )

    orchestrator = PipelineOrchestrator(
        store=ArtifactStore(config.DATA_DIR),
        transcriber=AudioTranscriber(model_name=config.ASR_MODEL_NAME),
        soap_generator=SoapGenerator(
            hf_client,
            max_tokens=config.LLM_MAX_TOKENS,
            temperature=config.LLM_TEMPERATURE
        ),
        renderer=PDFRenderer(config.PDF_DIR),
        ocr_processor=OCRProcessor(language=config.OCR_LANGUAGE),
        timeout_seconds=config.COLLABORATOR_TIMEOUT_SECONDS,
        max_workers=config.COLLABORATOR_MAX_WORKERS
    )

    logger.info("Collaborators loaded successfully")
    return orchestrator


def get_orchestrator() -> PipelineOrchestrator:
    """Return the app's orchestrator, building it on first use"""
    app = current_app
    orchestrator = app.extensions.get(ORCHESTRATOR_EXTENSION)
    if orchestrator is None:
        with _build_lock:
            orchestrator = app.extensions.get(ORCHESTRATOR_EXTENSION)
            if orchestrator is None:
                orchestrator = build_orchestrator()
                app.extensions[ORCHESTRATOR_EXTENSION] = orchestrator
    return orchestrator


def error_response(status_code, error, message=None, **extra):
    body = {'success': False, 'error': error}
    if message:
        body['message'] = message
    body.update(extra)
    return jsonify(body), status_code


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidStageInput("Request body must be a JSON object")
    return data


def _required_field(data, name):
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidStageInput(f"{name} is required")
    return value.strip()


def _save_upload(field_name, is_supported):
    """Validate and persist an uploaded file. Returns the saved path."""
    upload = request.files.get(field_name)
    if upload is None or not upload.filename:
        raise InvalidStageInput(f"No {field_name} file provided")
    if not is_supported(upload.filename):
        raise InvalidStageInput(f"Invalid {field_name} file format: {upload.filename}")

    upload_dir = current_app.config['UPLOAD_DIR']
    os.makedirs(upload_dir, exist_ok=True)
    file_path = os.path.join(upload_dir, generate_upload_filename(upload.filename))
    upload.save(file_path)

    logger.info(f"Saved upload {upload.filename} to {file_path}")
    return file_path


def register_error_handlers(app):
    """Map workflow errors to HTTP status codes"""

    @app.errorhandler(InvalidStageInput)
    def handle_invalid_input(e):
        return error_response(400, 'Invalid input', e.message)

    @app.errorhandler(PrerequisiteMissing)
    def handle_prerequisite_missing(e):
        return error_response(404, 'Prerequisite missing', e.message,
                              missing=list(e.missing), stage=e.stage)

    @app.errorhandler(IncompleteWorkflow)
    def handle_incomplete_workflow(e):
        return error_response(404, 'Workflow incomplete', e.message,
                              missing=list(e.missing))

    @app.errorhandler(CollaboratorTimeout)
    def handle_timeout(e):
        return error_response(504, 'Collaborator timeout', e.message, stage=e.stage)

    @app.errorhandler(WorkflowError)
    def handle_workflow_error(e):
        logger.error(f"Workflow error: {e}")
        return error_response(500, type(e).__name__, e.message, stage=e.stage)

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        return error_response(400, 'Invalid input', str(e))

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        return error_response(
            413, 'File too large', f"Maximum upload size is {app.config['MAX_UPLOAD_MB']} MB"
        )


def register_routes(app):

    @app.route('/api/health', methods=['GET'])
    def health():
        """Health check"""
        return jsonify({
            'success': True,
            'status': 'healthy',
            'models_loaded': ORCHESTRATOR_EXTENSION in app.extensions,
            'timestamp': datetime.now().isoformat()
        })

    @app.route('/api/templates', methods=['GET'])
    def templates():
        """Available SOAP templates in menu order"""
        return jsonify({'success': True, 'templates': list_templates()})

    @app.route('/api/audio-upload', methods=['POST'])
    def audio_upload():
        """Upload audio and transcribe it"""
        audio_path = _save_upload('audio', is_supported_audio)
        session_id = request.form.get('session_id') or generate_session_id()

        result = get_orchestrator().ingest_audio(session_id, audio_path)

        return jsonify({
            'success': True,
            'session_id': session_id,
            'transcript': result[ArtifactKey.TRANSCRIPT_RAW],
            'confidence': result[ArtifactKey.TRANSCRIPT_CONFIDENCE],
            'duration': result[ArtifactKey.AUDIO_DURATION],
            'message': 'Audio transcribed successfully'
        })

    @app.route('/api/transcript/confirm', methods=['POST'])
    def confirm_transcript():
        """Store the doctor-corrected transcript"""
        data = _json_body()
        session_id = _required_field(data, 'session_id')
        transcript = _required_field(data, 'transcript')

        get_orchestrator().confirm_transcript(session_id, transcript)

        return jsonify({
            'success': True,
            'session_id': session_id,
            'message': 'Transcript confirmed'
        })

    @app.route('/api/soap/generate', methods=['POST'])
    def generate_soap():
        """Generate the SOAP document from the confirmed transcript"""
        data = _json_body()
        session_id = _required_field(data, 'session_id')
        template_type = _required_field(data, 'template_type')
        transcript = data.get('transcript') or None

        result = get_orchestrator().generate_document(session_id, template_type, transcript)

        return jsonify({
            'success': True,
            'session_id': session_id,
            'template_type': result[ArtifactKey.TEMPLATE_TYPE],
            'soap_data': result[ArtifactKey.SOAP_DATA],
            'message': 'SOAP note generated successfully'
        })

    @app.route('/api/pdf/download', methods=['GET'])
    def download_pdf():
        """Render the stored SOAP document to PDF"""
        session_id = request.args.get('session_id', '').strip()
        if not session_id:
            raise InvalidStageInput("session_id is required")

        result = get_orchestrator().render_document(session_id)
        pdf_path = result[ArtifactKey.PDF_PATH]

        return jsonify({
            'success': True,
            'session_id': session_id,
            'pdf_path': pdf_path,
            'file_name': os.path.basename(pdf_path),
            'download_url': f"/api/pdf/file/{session_id}"
        })

    @app.route('/api/pdf/file/<session_id>', methods=['GET'])
    def pdf_file(session_id):
        """Serve the rendered PDF for a session"""
        pdf_path = get_orchestrator().store.get(session_id, ArtifactKey.PDF_PATH)

        if not pdf_path or not os.path.exists(pdf_path):
            return error_response(404, 'File not found', 'No rendered PDF for this session')

        return send_file(
            os.path.abspath(pdf_path),
            mimetype='application/pdf',
            as_attachment=True,
            download_name=os.path.basename(pdf_path)
        )

    @app.route('/api/ocr-upload', methods=['POST'])
    def ocr_upload():
        """Upload a bill image and run OCR"""
        image_path = _save_upload('image', is_supported_image)
        ocr_session_id = request.form.get('ocr_session_id') or generate_session_id()

        result = get_orchestrator().ingest_image(ocr_session_id, image_path)
        text = result[ArtifactKey.OCR_RAW]
        confidence = result[ArtifactKey.OCR_CONFIDENCE]

        return jsonify({
            'success': True,
            'ocr_session_id': ocr_session_id,
            'extracted_text': text,
            'confidence': confidence,
            'quality': assess_text_quality(text, confidence),
            'message': 'Text extracted successfully'
        })

    @app.route('/api/ocr/confirm', methods=['POST'])
    def confirm_ocr():
        """Store the corrected OCR text"""
        data = _json_body()
        ocr_session_id = _required_field(data, 'ocr_session_id')
        text = _required_field(data, 'text')

        get_orchestrator().confirm_ocr_text(ocr_session_id, text)

        return jsonify({
            'success': True,
            'ocr_session_id': ocr_session_id,
            'message': 'OCR text confirmed'
        })

    @app.route('/api/bill/extract', methods=['POST'])
    def extract_bill():
        """Extract structured bill fields from the OCR text"""
        data = _json_body()
        ocr_session_id = _required_field(data, 'ocr_session_id')

        result = get_orchestrator().extract_bill(ocr_session_id)

        return jsonify({
            'success': True,
            'ocr_session_id': ocr_session_id,
            'bill_info': result[ArtifactKey.BILL_INFO]
        })

    @app.route('/api/final-response', methods=['GET'])
    def final_response():
        """Join the consultation and (optionally) the bill scan"""
        session_id = request.args.get('session_id', '').strip()
        if not session_id:
            raise InvalidStageInput("session_id is required")
        ocr_session_id = request.args.get('ocr_session_id', '').strip() or None

        response = get_orchestrator().assemble_final_response(session_id, ocr_session_id)

        return jsonify({'success': True, **response.to_dict()})

    @app.route('/api/session/<session_id>/status', methods=['GET'])
    def session_status(session_id):
        """Workflow position and completion percentage"""
        status = get_orchestrator().status(session_id)
        return jsonify({'success': status.error is None, **status.to_dict()})

    @app.route('/api/session/<session_id>', methods=['DELETE'])
    def delete_session(session_id):
        """Delete every artifact of a session"""
        get_orchestrator().store.delete_session(session_id)
        return jsonify({
            'success': True,
            'session_id': session_id,
            'message': 'Session deleted'
        })


def create_app(orchestrator=None):
    """
    Application factory.

    Args:
        orchestrator: Pre-built PipelineOrchestrator (tests). When None the
            production orchestrator is built on first request.
    """
    app = Flask(__name__)
    app.config['MAX_UPLOAD_MB'] = config.MAX_UPLOAD_MB
    app.config['MAX_CONTENT_LENGTH'] = config.MAX_UPLOAD_MB * 1024 * 1024
    app.config['UPLOAD_DIR'] = config.UPLOAD_DIR

    if orchestrator is not None:
        app.extensions[ORCHESTRATOR_EXTENSION] = orchestrator

    register_error_handlers(app)
    register_routes(app)
    return app


if __name__ == '__main__':
    app = create_app()

    # Load models before accepting requests
    with app.app_context():
        get_orchestrator()

    os.makedirs(config.UPLOAD_DIR, exist_ok=True)

    print("\n" + "="*60)
    print("CLINICAL DOCUMENTATION WORKFLOW - WEB API")
    print("="*60)
    print(f"\nServer starting on http://localhost:{config.PORT}")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=config.DEBUG, host='0.0.0.0', port=config.PORT)
