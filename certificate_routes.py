from flask import Blueprint, current_app, request, jsonify, send_file
import asyncio
import base64
import io
import json
import logging
import threading

from PIL import Image, UnidentifiedImageError

from ai_drafting import DEFAULT_TONE, DraftGenerationError, DraftValidationError, apply_ai_draft
from batch_export import CancellationToken, EmptyExportError, ExportInProgressError, ExportState, SinkKind
from certificate_layout import render_template
from models import FONTS, THEMES, OverlayNotFoundError, ProjectSnapshot, TemplateValidationError
from participant_portal import encode_portable_payload
from placeholders import placeholder_keys
from recipient_store import CsvImportError, RecipientValidationError, mailto_link

logger = logging.getLogger(__name__)

certificate_bp = Blueprint('certificate', __name__)

_ALLOWED_IMAGE_FORMATS = {'PNG', 'JPEG', 'GIF', 'WEBP'}


def _workspace():
    return current_app.extensions['certificates']


def _error(message, status):
    return jsonify({'success': False, 'message': message}), status


def _reject_while_exporting():
    if _workspace().exporting:
        return _error('An export is running; the template is locked until it finishes', 409)
    return None


def _template_payload(template):
    data = template.to_dict()
    data['placeholders'] = sorted(set(placeholder_keys(template.content.body_template)))
    return data


def _recipient_payload(recipient):
    data = recipient.to_dict()
    data.update(data.pop('extra'))
    return data


def _image_data_url(file_storage):
    raw = file_storage.read()
    if not raw:
        raise TemplateValidationError('Uploaded image is empty')
    try:
        with Image.open(io.BytesIO(raw)) as probe:
            fmt = probe.format
    except UnidentifiedImageError:
        raise TemplateValidationError('Uploaded file is not an image')
    if fmt not in _ALLOWED_IMAGE_FORMATS:
        raise TemplateValidationError(f'Unsupported image format: {fmt}')
    return f"data:image/{fmt.lower()};base64,{base64.b64encode(raw).decode('ascii')}"


def _send_pdf(content, filename):
    return send_file(
        io.BytesIO(content),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=filename
    )


# Template

@certificate_bp.route('/api/certificate/template', methods=['GET'])
def get_template():
    """Current template with the theme and font presets."""
    ws = _workspace()
    return jsonify({
        'success': True,
        'data': {
            'template': _template_payload(ws.template),
            'themes': [{'id': t.id, 'name': t.name} for t in THEMES],
            'fonts': FONTS,
        }
    })


@certificate_bp.route('/api/certificate/template/design', methods=['PUT'])
def update_design():
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        data = request.get_json() or {}
        _workspace().template.update_design(**data)
        return jsonify({'success': True, 'data': _template_payload(_workspace().template)})
    except TemplateValidationError as e:
        return _error(str(e), 400)


@certificate_bp.route('/api/certificate/template/content', methods=['PUT'])
def update_content():
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        data = request.get_json() or {}
        _workspace().template.update_content(**data)
        return jsonify({'success': True, 'data': _template_payload(_workspace().template)})
    except TemplateValidationError as e:
        return _error(str(e), 400)


@certificate_bp.route('/api/certificate/template/overlays', methods=['POST'])
def upload_overlay():
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        file = request.files.get('file')
        if file is None:
            return _error('Please upload an image file', 400)
        kind = str(request.form.get('kind', 'logo') or 'logo').strip().lower()
        overlay = _workspace().template.add_overlay(
            _image_data_url(file),
            kind=kind,
            width=request.form.get('width', 150),
            height=request.form.get('height', 100),
        )
        return jsonify({'success': True, 'data': {'id': overlay.id, 'x': overlay.x, 'y': overlay.y}}), 201
    except TemplateValidationError as e:
        return _error(str(e), 400)


@certificate_bp.route('/api/certificate/template/overlays/<string:overlay_id>', methods=['PUT'])
def move_overlay(overlay_id):
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        data = request.get_json() or {}
        overlay = _workspace().template.move_overlay(overlay_id, data.get('x'), data.get('y'))
        return jsonify({'success': True, 'data': {'id': overlay.id, 'x': overlay.x, 'y': overlay.y}})
    except OverlayNotFoundError as e:
        return _error(str(e), 404)
    except TemplateValidationError as e:
        return _error(str(e), 400)


@certificate_bp.route('/api/certificate/template/overlays/<string:overlay_id>', methods=['DELETE'])
def delete_overlay(overlay_id):
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        _workspace().template.remove_overlay(overlay_id)
        return jsonify({'success': True, 'message': 'Overlay removed'})
    except OverlayNotFoundError as e:
        return _error(str(e), 404)


@certificate_bp.route('/api/certificate/template/signers', methods=['POST'])
def add_signer_block():
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        signature_src = None
        file = request.files.get('signature')
        if file is not None:
            signature_src = _image_data_url(file)
        form = request.form if request.files else (request.get_json(silent=True) or {})
        block = _workspace().template.add_signer_block(
            name=form.get('name', ''),
            title=form.get('title', ''),
            x=form.get('x', 736),
            y=form.get('y', 560),
            signature_src=signature_src,
        )
        return jsonify({'success': True, 'data': {'id': block.id, 'x': block.x, 'y': block.y}}), 201
    except TemplateValidationError as e:
        return _error(str(e), 400)


@certificate_bp.route('/api/certificate/template/signers/<string:block_id>', methods=['PUT'])
def move_signer_block(block_id):
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        data = request.get_json() or {}
        block = _workspace().template.move_signer_block(block_id, data.get('x'), data.get('y'))
        return jsonify({'success': True, 'data': {'id': block.id, 'x': block.x, 'y': block.y}})
    except OverlayNotFoundError as e:
        return _error(str(e), 404)
    except TemplateValidationError as e:
        return _error(str(e), 400)


@certificate_bp.route('/api/certificate/template/signers/<string:block_id>', methods=['DELETE'])
def delete_signer_block(block_id):
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        _workspace().template.remove_signer_block(block_id)
        return jsonify({'success': True, 'message': 'Signer removed'})
    except OverlayNotFoundError as e:
        return _error(str(e), 404)


@certificate_bp.route('/api/certificate/template/ai-draft', methods=['POST'])
def ai_draft():
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        data = request.get_json() or {}
        text = apply_ai_draft(
            _workspace().template,
            data.get('topic'),
            tone=data.get('tone') or DEFAULT_TONE,
            api_key=current_app.config.get('GOOGLE_API_KEY'),
            model=current_app.config.get('GEMINI_MODEL'),
        )
        return jsonify({'success': True, 'data': {'body_template': text}})
    except DraftValidationError as e:
        return _error(str(e), 400)
    except DraftGenerationError as e:
        return _error(str(e), 502)


@certificate_bp.route('/api/certificate/preview', methods=['GET'])
def preview_certificate():
    ws = _workspace()
    recipient = None
    recipient_id = str(request.args.get('recipient_id', '') or '').strip()
    if recipient_id:
        recipient = ws.recipients.get(recipient_id)
        if recipient is None:
            return _error('Recipient not found', 404)
    try:
        png = ws.generator.render_png(render_template(ws.template, recipient))
    except Exception as e:
        logger.exception('Preview failed')
        return _error(f'Preview failed: {str(e)}', 500)
    return send_file(io.BytesIO(png), mimetype='image/png')


# Recipients

@certificate_bp.route('/api/certificate/recipients', methods=['GET'])
def list_recipients():
    ws = _workspace()
    return jsonify({
        'success': True,
        'data': [_recipient_payload(r) for r in ws.recipients],
    })


@certificate_bp.route('/api/certificate/recipients', methods=['POST'])
def add_recipient():
    try:
        data = request.get_json() or {}
        recipient = _workspace().recipients.add_one(
            name=data.get('name'),
            id=data.get('id') or None,
            rank=data.get('rank'),
            role=data.get('role'),
            email=data.get('email'),
        )
        return jsonify({'success': True, 'data': _recipient_payload(recipient)}), 201
    except RecipientValidationError as e:
        return _error(str(e), 400)


@certificate_bp.route('/api/certificate/recipients/import', methods=['POST'])
def import_recipients():
    file = request.files.get('file')
    if file is None:
        return _error('Please upload a CSV file', 400)
    try:
        added = _workspace().recipients.import_csv(file.read())
        return jsonify({
            'success': True,
            'message': f'Added {len(added)} participants.',
            'data': [_recipient_payload(r) for r in added],
        })
    except CsvImportError as e:
        return _error(str(e), 400)


@certificate_bp.route('/api/certificate/recipients/<string:recipient_id>', methods=['DELETE'])
def delete_recipient(recipient_id):
    if not _workspace().recipients.remove(recipient_id):
        return _error('Recipient not found', 404)
    return jsonify({'success': True, 'message': 'Recipient removed'})


@certificate_bp.route('/api/certificate/recipients/<string:recipient_id>/mailto', methods=['POST'])
def recipient_mailto(recipient_id):
    ws = _workspace()
    recipient = ws.recipients.get(recipient_id)
    if recipient is None:
        return _error('Recipient not found', 404)
    if not recipient.email:
        return _error('Recipient has no email address', 400)
    data = request.get_json(silent=True) or {}
    subject = data.get('subject') or f'Your certificate: {ws.template.content.title}'
    link = mailto_link(recipient, subject, data.get('body') or '')
    ws.recipients.set_status(recipient.id, 'sent')
    return jsonify({'success': True, 'data': {'mailto': link}})


@certificate_bp.route('/api/certificate/recipients/<string:recipient_id>/claim-link', methods=['GET'])
def recipient_claim_link(recipient_id):
    ws = _workspace()
    recipient = ws.recipients.get(recipient_id)
    if recipient is None:
        return _error('Recipient not found', 404)
    return jsonify({'success': True, 'data': {'payload': encode_portable_payload(recipient, ws.template)}})


# Exports

@certificate_bp.route('/api/certificate/generate/<string:recipient_id>', methods=['GET'])
def generate_certificate(recipient_id):
    """Download one recipient's certificate PDF."""
    ws = _workspace()
    recipient = ws.recipients.get(recipient_id)
    if recipient is None:
        return _error('Recipient not found', 404)
    try:
        with ws.export_lock:
            if ws.exporting:
                raise ExportInProgressError('An export is already running')
        result = asyncio.run(ws.controller.start_single_export(ws.template, recipient))
    except ExportInProgressError as e:
        return _error(str(e), 409)

    if result.state != ExportState.COMPLETED:
        return _error(f'Download failed: {result.error}', 500)
    return _send_pdf(result.content, result.filename)


def _start_background_export(ws, *, recipients, sink_kind):
    token = CancellationToken()
    template = ws.template.snapshot()

    def _run():
        try:
            ws.bulk_result = asyncio.run(
                ws.controller.start_bulk_export(template, recipients, sink_kind, token=token)
            )
        except Exception:
            logger.exception('Background %s export crashed', sink_kind.value)

    ws.bulk_token = token
    ws.bulk_result = None
    t = threading.Thread(target=_run, daemon=True)
    ws.bulk_thread = t
    t.start()
    return t


@certificate_bp.route('/api/certificate/batch-generate', methods=['POST'])
def batch_generate_certificates():
    """Start a bulk export on a background thread."""
    ws = _workspace()
    data = request.get_json(silent=True) or {}
    try:
        sink_kind = SinkKind(str(data.get('sink', SinkKind.SINGLE_PDF.value)))
    except ValueError:
        return _error("sink must be 'single-pdf' or 'zip'", 400)

    recipients = ws.recipients.all()
    try:
        if not recipients:
            raise EmptyExportError('There are no recipients to export')
        with ws.export_lock:
            if ws.exporting:
                raise ExportInProgressError('An export is already running')
            _start_background_export(ws, recipients=recipients, sink_kind=sink_kind)
    except EmptyExportError as e:
        return _error(str(e), 400)
    except ExportInProgressError as e:
        return _error(str(e), 409)

    return jsonify({
        'success': True,
        'message': 'Export started',
        'data': {'sink': sink_kind.value, 'total': len(recipients)}
    }), 202


@certificate_bp.route('/api/certificate/batch-status', methods=['GET'])
def batch_status():
    ws = _workspace()
    return jsonify({
        'success': True,
        'data': {
            'progress': ws.controller.progress().to_dict(),
            'result': ws.bulk_result.to_dict() if ws.bulk_result else None,
        }
    })


@certificate_bp.route('/api/certificate/batch-cancel', methods=['POST'])
def batch_cancel():
    ws = _workspace()
    if not ws.exporting or ws.bulk_token is None:
        return _error('No export is running', 409)
    ws.bulk_token.cancel()
    return jsonify({'success': True, 'message': 'Cancellation requested'})


@certificate_bp.route('/api/certificate/batch-download', methods=['GET'])
def batch_download():
    ws = _workspace()
    result = ws.bulk_result
    if result is None or result.state != ExportState.COMPLETED or not result.content:
        return _error('No finished export to download', 404)
    if result.kind == SinkKind.ZIP.value:
        return send_file(
            io.BytesIO(result.content),
            mimetype='application/zip',
            as_attachment=True,
            download_name=result.filename
        )
    return _send_pdf(result.content, result.filename)


# Project

@certificate_bp.route('/api/certificate/project', methods=['GET'])
def export_project():
    snapshot = _workspace().snapshot()
    return jsonify({'success': True, 'data': snapshot.to_dict()})


@certificate_bp.route('/api/certificate/project', methods=['POST'])
def import_project():
    locked = _reject_while_exporting()
    if locked:
        return locked
    try:
        if 'file' in request.files:
            data = json.loads(request.files['file'].read().decode('utf-8'))
        else:
            data = request.get_json() or {}
        snapshot = ProjectSnapshot.from_dict(data)
    except (ValueError, UnicodeDecodeError, TemplateValidationError) as e:
        return _error(f'Invalid project file: {str(e)}', 400)

    ws = _workspace()
    ws.template = snapshot.template
    ws.recipients.replace_all(snapshot.recipients)
    return jsonify({'success': True, 'message': 'Project loaded', 'data': {'recipients': len(ws.recipients)}})


@certificate_bp.route('/api/certificate/project/publish', methods=['POST'])
def publish_project():
    snapshot = _workspace().publish()
    return jsonify({
        'success': True,
        'message': 'Published for participants',
        'data': {'recipients': len(snapshot.recipients), 'saved_at': snapshot.saved_at}
    })
