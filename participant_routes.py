from flask import Blueprint, current_app, request, jsonify, send_file
import asyncio
import io
import logging

from batch_export import ExportInProgressError, ExportState
from participant_portal import ConfigurationMissingError, ParticipantPortal, decode_portable_payload

logger = logging.getLogger(__name__)

participant_bp = Blueprint('participant', __name__)


def _portal():
    ws = current_app.extensions['certificates']
    return ParticipantPortal(ws.published, ws.controller)


def _public_recipient(recipient):
    from app import mask_email

    return {
        'id': recipient.id,
        'name': recipient.name,
        'email': mask_email(recipient.email),
        'rank': recipient.rank,
        'role': recipient.role,
    }


@participant_bp.route('/api/participant/search', methods=['GET'])
def search_certificate():
    """Look up a certificate by recipient ID or name."""
    query = str(request.args.get('q', '') or '')
    try:
        result = _portal().search(query)
    except ConfigurationMissingError as e:
        return jsonify({'success': False, 'message': str(e)}), 503
    if result.found is None:
        return jsonify({'success': False, 'found': False, 'message': result.message}), 404
    return jsonify({'success': True, 'found': True, 'data': _public_recipient(result.found)})


@participant_bp.route('/api/participant/certificate/<string:recipient_id>', methods=['GET'])
def download_certificate(recipient_id):
    portal = _portal()
    try:
        result = portal.search(recipient_id)
        if result.found is None or result.found.id.lower() != recipient_id.lower():
            return jsonify({'success': False, 'message': result.message or 'Recipient not found'}), 404
        export = asyncio.run(portal.download(result.found))
    except ConfigurationMissingError as e:
        return jsonify({'success': False, 'message': str(e)}), 503
    except ExportInProgressError:
        return jsonify({'success': False, 'message': 'Certificates are being generated, please try again shortly'}), 409

    if export.state != ExportState.COMPLETED:
        return jsonify({'success': False, 'message': 'Failed to generate PDF. Please try again.'}), 500
    return send_file(
        io.BytesIO(export.content),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=export.filename
    )


@participant_bp.route('/api/participant/claim', methods=['GET'])
def claim_certificate():
    """Download a certificate from a portable claim payload."""
    ws = current_app.extensions['certificates']
    try:
        recipient, template = decode_portable_payload(request.args.get('data', ''))
        export = asyncio.run(ws.controller.start_single_export(template, recipient))
    except ValueError as e:
        return jsonify({'success': False, 'message': str(e)}), 400
    except ExportInProgressError:
        return jsonify({'success': False, 'message': 'Certificates are being generated, please try again shortly'}), 409

    if export.state != ExportState.COMPLETED:
        return jsonify({'success': False, 'message': 'Failed to generate PDF. Please try again.'}), 500
    return send_file(
        io.BytesIO(export.content),
        mimetype='application/pdf',
        as_attachment=True,
        download_name=export.filename
    )
