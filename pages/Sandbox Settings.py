import streamlit as st
from sandbox.settings import load_settings, save_settings, reset_to_defaults

st.set_page_config(page_title="Sandbox Settings", layout="wide")
st.title("Sandbox Settings")
st.caption("Tune simulation speed, probe dynamics, and blueprint fragility. Settings are saved to disk and apply to new sessions.")

settings = load_settings()

with st.sidebar:
    st.subheader("Presets")
    if st.button("Reset to Defaults"):
        settings = reset_to_defaults()
        st.success("Settings reset to defaults.")

with st.form("settings_form"):
    tabs = st.tabs(["Simulation", "Probes", "Blueprint", "Export"])

    with tabs[0]:
        st.markdown("### Simulation")
        sim = settings["simulation"]
        c1, c2, c3 = st.columns(3)
        sim["tick_seconds"] = c1.number_input("Seconds per Month", 0.1, 30.0, float(sim["tick_seconds"]), 0.1, help="Wall-clock time between simulated months.")
        sim["message_feed_capacity"] = c2.number_input("Feed Length", 10, 500, int(sim["message_feed_capacity"]), help="Newest messages kept in the narrative feed.")
        sim["emotion_history_capacity"] = c3.number_input("Emotion Points", 5, 200, int(sim["emotion_history_capacity"]), help="Points kept for the emotion trend chart.")

    with tabs[1]:
        st.markdown("### Probes")
        probes = settings["probes"]
        c1, c2, c3 = st.columns(3)
        probes["amplification_bonus"] = c1.number_input("Amplification Bonus", 1.0, 3.0, float(probes["amplification_bonus"]), 0.05, help="Effect multiplier once a probe is amplified.")
        probes["variance_min"] = c2.number_input("Variance Min", 0.0, 1.0, float(probes["variance_min"]), 0.05, help="Lower bound of per-month noise on probe effects.")
        probes["variance_max"] = c3.number_input("Variance Max", 1.0, 2.0, float(probes["variance_max"]), 0.05, help="Upper bound of per-month noise on probe effects.")

    with tabs[2]:
        st.markdown("### Blueprint")
        fragile = settings["fragile"]
        c1, c2, c3 = st.columns(3)
        fragile["success_gain_probability"] = c1.number_input("Gain Chance on Success", 0.0, 1.0, float(fragile["success_gain_probability"]), 0.05, help="Chance each domain gains +1 on a successful month.")
        fragile["failure_severe_probability"] = c2.number_input("Severe Loss Chance", 0.0, 1.0, float(fragile["failure_severe_probability"]), 0.05, help="Chance each domain loses 2 (else 1) on a failed month.")
        fragile["risk_exposure_bonus"] = c3.number_input("Extra Risk Exposure", 0.0, 2.0, float(fragile["risk_exposure_bonus"]), 0.05, help="Extra share of a new risk's modifier felt by blueprints.")

    with tabs[3]:
        st.markdown("### Export")
        export = settings["export"]
        export["directory"] = st.text_input("Export Directory", export["directory"], help="Where headless runs write export documents.")

    submitted = st.form_submit_button("Save Settings")
    if submitted:
        save_settings(settings)
        st.success("Settings saved.")

st.markdown("""
Tips:
- A faster month makes the narrative feed hard to follow; 1-2 seconds reads well.
- A wider variance band makes probe outcomes noisier without changing their average.
- Raising blueprint risk exposure exaggerates how badly top-down rollouts absorb shocks.
""")
