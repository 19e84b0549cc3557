from k8s_memory_analyzer import analyze_data_file
from k8s_memory_analyzer import import_to_file
from k8s_memory_analyzer.models.recommendation import AnalysisResults
from k8s_memory_analyzer.utils.conversions import convert_dt_to_epoch

# --- Example 1: Importing two hours of usage from Prometheus ---
try:
    print("--- Importing usage from Prometheus ---")
    dataset = import_to_file(
        url="http://prometheus.example.com/api/",  # Replace with your Prometheus URL
        start=convert_dt_to_epoch("2020-04-19T19:00:00Z"),
        end=convert_dt_to_epoch("2020-04-19T21:00:00Z"),
        output_path="./data",
    )
    print(f"Imported {len(dataset.entity_histograms)} containers")

except Exception as e:
    print(f"An error occurred: {e}")

# --- Example 2: Analyzing the imported data ---
try:
    print("--- Analyzing imported data ---")
    results: AnalysisResults = analyze_data_file("./data", risk_tolerance=0.05)

    print("\n--- Analysis Complete ---")
    print(f"Calibrated percentile: p{results.percentile}")
    print(f"Historical under-request risk: {results.risk:.2%}")
    print(f"Total request size: {results.peak_total_request} MB")
    for container_id, request_mb in results.sorted_recommendations():
        print(f"{container_id}: {request_mb}Mi")

except Exception as e:
    print(f"An error occurred: {e}")
