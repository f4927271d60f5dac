from flask import Flask, request, jsonify
from flask_cors import CORS
from budget_engine import BudgetProcessor
from budget_engine.calculators import ConvergenceSolver
from budget_engine.validators import FeeConfigurationError
import os
import logging

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes (the planning front end calls the API from the browser)
CORS(app)

# Initialize the budget processor
processor = BudgetProcessor(solver=ConvergenceSolver.from_env())


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Media Budget Calculation API",
        "version": "1.0",
        "endpoints": {
            "calculate": "/calculate [POST]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy"}), 200


@app.route("/calculate", methods=["POST"])
def calculate():
    """
    Recalculate a tactic's budget snapshot
    """
    try:
        # Get input data
        input_data = request.get_json(force=True, silent=True)

        if not input_data or not isinstance(input_data, dict):
            return jsonify({
                "error": "No input data provided",
                "status": "failed"
            }), 400

        # Log request
        logger.info("Calculating budget")

        # Process through engine
        result = processor.process_from_dict(input_data)

        snapshot = result['snapshot']
        logger.info(f"Budget calculated: {snapshot['budget_mode']} mode, client {snapshot['client_budget']}")

        return jsonify(result), 200

    except FeeConfigurationError as e:
        # The client's fee setup cannot be evaluated
        logger.error(f"Configuration error: {str(e)}")
        return jsonify({
            "error": str(e),
            "status": "configuration_error"
        }), 422

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


@app.route("/calculate_budget", methods=["POST"])
def calculate_budget_alias():
    """Alias of /calculate"""
    return calculate()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)
