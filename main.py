from flask import Flask, request, jsonify
from flask_cors import CORS
from rollup import NotFoundError
from rollup.processor import (
    evaluate_plan_from_dict,
    process_commissions_from_dict,
    process_invoice_from_dict,
    process_summary_from_dict,
)
import os
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes (the CRM front end calls the API directly)
CORS(app)


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Commission & Financial Rollup API",
        "version": "1.0",
        "endpoints": {
            "financial_summary": "/financial_summary [POST]",
            "compose_invoice": "/compose_invoice [POST]",
            "recalculate_commissions": "/recalculate_commissions [POST]",
            "evaluate_commission": "/evaluate_commission [POST]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy"}), 200


def _run(operation, describe):
    """Run a dict-API operation on the request body and map engine errors to HTTP codes."""
    try:
        input_data = request.get_json(force=True, silent=True)

        if not input_data:
            return jsonify({
                "error": "No input data provided",
                "status": "failed"
            }), 400

        logger.info(f"Processing {describe(input_data)}")
        result = operation(input_data)
        logger.info(f"Processed successfully: {describe(input_data)}")

        return jsonify(result), 200

    except NotFoundError as e:
        logger.error(f"Not found: {str(e)}")
        return jsonify({
            "error": str(e),
            "status": "not_found"
        }), 404

    except (ValueError, KeyError, TypeError) as e:
        # Validation errors from engine
        logger.error(f"Validation error: {str(e)}")
        return jsonify({
            "error": str(e),
            "status": "validation_failed"
        }), 400

    except Exception as e:
        # Unexpected errors
        logger.error(f"Processing error: {str(e)}", exc_info=True)
        return jsonify({
            "error": "An unexpected error occurred during processing",
            "status": "failed"
        }), 500


def _lead(data):
    return f"lead {data.get('lead_id', 'Unknown')}"


@app.route("/financial_summary", methods=["POST"])
def financial_summary():
    """Revenue, cost, profit and margin for one lead"""
    return _run(process_summary_from_dict, _lead)


@app.route("/compose_invoice", methods=["POST"])
def compose_invoice():
    """Draft invoice from contract lines, approved change orders and additional items"""
    return _run(process_invoice_from_dict, _lead)


@app.route("/recalculate_commissions", methods=["POST"])
def recalculate_commissions():
    """Recompute every commission on a lead"""
    return _run(process_commissions_from_dict, _lead)


@app.route("/evaluate_commission", methods=["POST"])
def evaluate_commission():
    """Evaluate one commission plan against one base amount"""
    return _run(evaluate_plan_from_dict, lambda data: f"plan {data.get('plan', {}).get('id', 'Unknown')}")


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)
