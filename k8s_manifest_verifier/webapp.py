
import logging

from flask import Flask, request, jsonify

from .errors import VerificationError, stage_of
from .kubeutil import KubeDryRun
from .option import VerifyResourceOption
from .verifier import verify_resource

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config.setdefault('DRYRUN', None)


def _dryrun():
    # one client per process; discovery runs on its first request
    if app.config['DRYRUN'] is None:
        app.config['DRYRUN'] = KubeDryRun()
    return app.config['DRYRUN']


@app.get('/healthz')
def healthz():
    return jsonify({'status': 'ok'})


@app.post('/verify')
def verify():
    body = request.get_json(silent=True)
    if not isinstance(body, dict) or not isinstance(body.get('object'), dict):
        return jsonify({'error': 'request body must be {"object": {...}, "options": {...}}'}), 400
    try:
        option = VerifyResourceOption.from_dict(body.get('options'))
    except (TypeError, ValueError, AttributeError) as e:
        return jsonify({'error': f'invalid options: {e}'}), 400

    try:
        res = verify_resource(body['object'], option, dryrun=_dryrun())
    except VerificationError as e:
        logger.warning("verification failed: %s", e)
        return jsonify({'error': str(e), 'stage': stage_of(e)}), 500
    return jsonify(res.to_dict())


if __name__ == '__main__':
    app.run(debug=True)
