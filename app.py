import json
import time

import streamlit as st
import pandas as pd
import plotly.graph_objects as go
import plotly.express as px
import pycountry
from streamlit_plotly_events import plotly_events
from sandbox.main import setup_from_config
from sandbox.models import DOMAINS, STAGES, ACTIVE, confidence_info
from sandbox.settings import configure_logging, lag_window, load_settings
from sandbox.simulation import EMOTIONS, Simulation

st.set_page_config(layout="wide")

st.title("Governor Sandbox - Blueprints vs Anti-Fragile Probes")
st.caption("Pick a country on the map, work through the policy cycle, and watch six wellbeing domains respond month by month. "
           "This is an educational toy model, not a forecast.")

STAGE_LABELS = {
    "diagnose": "Map fragilities using wellbeing indicators and narrative signals",
    "analyze": "Understand cultural levers that shape policy reception",
    "design": "Choose intervention strategy: Blueprint or Anti-Fragile Probes",
    "monitor": "Track real-time feedback and wellbeing metrics",
    "refine": "Retire failures, amplify successes, capture lessons",
}


# --- Helper Functions ---
@st.cache_data
def get_iso_alpha(country_name):
    """Get ISO alpha-3 code for a country name with common alias fallbacks."""
    ALIASES = {
        "United Kingdom": "GBR",
        "UK": "GBR",
        "Cameroon": "CMR",
    }
    if country_name in ALIASES:
        return ALIASES[country_name]
    try:
        return pycountry.countries.search_fuzzy(country_name)[0].alpha_3
    except LookupError:
        return None


def prepare_map_dataframe(sim):
    """One row per playable country; colour is the live (or baseline) wellbeing score."""
    map_rows = []
    for country in sim.countries.values():
        iso_code = get_iso_alpha(country.name)
        if not iso_code:
            continue
        if sim.state is not None and sim.state.country_id == country.id:
            wellbeing = sim.state.wellbeing
        elif country.id in sim.cache:
            wellbeing = sim.cache.restore(country.id).wellbeing
        else:
            wellbeing = country.wellbeing
        map_rows.append(
            {
                "iso_alpha": str(iso_code).upper(),
                "country_id": country.id,
                "country": country.name,
                "value": wellbeing.score,
                "trust": wellbeing.public_trust,
                "stressor": country.stressor or "N/A",
                "blueprint_fit": f"{country.blueprint.fit_score:.0%}",
            }
        )
    return pd.DataFrame(map_rows)


def render_map(map_df, key):
    """Render the choropleth and return the clicked country id, if any."""
    if map_df.empty:
        st.info("No playable countries could be placed on the map.")
        return None
    fig = px.choropleth(
        map_df,
        locations="iso_alpha",
        color="value",
        hover_name="country",
        hover_data={"value": True, "trust": True, "stressor": True, "blueprint_fit": True, "iso_alpha": False},
        color_continuous_scale="RdYlGn",
        range_color=(0, 100),
        projection="natural earth",
    )
    fig.update_layout(
        margin=dict(l=0, r=0, t=10, b=0),
        coloraxis_colorbar=dict(title="Wellbeing"),
        height=320,
    )
    clicked = plotly_events(fig, click_event=True, key=key)
    if clicked:
        idx = clicked[0].get("pointIndex", clicked[0].get("pointNumber"))
        if idx is not None and 0 <= idx < len(map_df):
            return map_df.iloc[idx]["country_id"]
    return None


def render_radar(stats):
    labels = [d.capitalize() for d in DOMAINS]
    fig = go.Figure()
    if stats["initialWellbeing"]:
        fig.add_trace(go.Scatterpolar(
            r=[stats["initialWellbeing"][d] for d in DOMAINS] + [stats["initialWellbeing"][DOMAINS[0]]],
            theta=labels + labels[:1], name="Start of cycle", line=dict(dash="dot"),
        ))
    fig.add_trace(go.Scatterpolar(
        r=[stats["wellbeing"][d] for d in DOMAINS] + [stats["wellbeing"][DOMAINS[0]]],
        theta=labels + labels[:1], fill="toself", name="Now",
    ))
    fig.update_layout(polar=dict(radialaxis=dict(range=[0, 100])), margin=dict(l=20, r=20, t=20, b=20), height=320)
    st.plotly_chart(fig, use_container_width=True)


def render_probe_card(sim, probe):
    info = confidence_info(probe["confidence"])
    with st.container(border=True):
        st.markdown(f"**{probe['name']}** - `{probe['status'].upper()}`")
        st.caption(f"{info['label']}: {info['description']}")
        c1, c2, c3 = st.columns(3)
        c1.metric("Cultural fit", f"{probe['culturalFit']:.0%}")
        c2.metric("Lag progress", f"{probe['lagProgress']}%")
        c3.metric("Months to effect", probe["monthsRemaining"])
        can_act = probe["status"] == ACTIVE
        b1, b2 = st.columns(2)
        if b1.button("Retire", key=f"retire_{probe['id']}", disabled=not can_act):
            sim.manage_probe(probe["id"], "retire")
            st.rerun()
        if b2.button("Amplify", key=f"amplify_{probe['id']}", disabled=not can_act or probe["isPending"]):
            sim.manage_probe(probe["id"], "amplify")
            st.rerun()


# --- State Management ---
if "sim" not in st.session_state:
    settings = load_settings()
    configure_logging(settings)
    countries = setup_from_config(default_lag=lag_window(settings))
    sim = Simulation(countries, settings=settings)
    sim.select_country(countries[0].id)
    st.session_state.sim = sim

sim = st.session_state.sim

st.sidebar.header("Country")
country_ids = list(sim.countries.keys())
choice = st.sidebar.selectbox(
    "Active country",
    country_ids,
    index=country_ids.index(sim.country.id),
    format_func=lambda cid: f"{sim.countries[cid].flag} {sim.countries[cid].name}",
)
if choice != sim.country.id:
    sim.select_country(choice)
    st.rerun()

st.sidebar.metric("Simulation speed", f"{sim.tick_seconds:g}s / month")
if sim.state.strategy is not None:
    if sim.simulation_running:
        if st.sidebar.button("Pause"):
            sim.stop()
            st.rerun()
    elif st.sidebar.button("Resume"):
        sim.start()
        st.rerun()
if st.sidebar.button("Reset Country"):
    sim.reset_simulation()
    st.rerun()

clicked_country = render_map(prepare_map_dataframe(sim), "world_map")
if clicked_country and clicked_country != sim.country.id:
    sim.select_country(clicked_country)
    st.rerun()

stats = sim.get_stats()
country = sim.country

# --- Cycle Navigator ---
st.header(f"{country.flag} {country.name} - Cycle {stats['cycleCount']}")
stage_cols = st.columns(len(STAGES))
for col, stage in zip(stage_cols, STAGES):
    if stage == stats["cycleStage"]:
        col.markdown(f"**▶ {stage.capitalize()}**")
    elif stage in stats["completedStages"]:
        col.markdown(f"✓ {stage.capitalize()}")
    else:
        col.markdown(f"{stage.capitalize()}")
st.caption(STAGE_LABELS[stats["cycleStage"]])

stage = stats["cycleStage"]
if stage == "diagnose":
    st.markdown(f"**Stressor:** {country.stressor}")
    st.write(country.stressor_detail)
    if st.button("Continue to Analyze"):
        sim.advance_stage("analyze")
        st.rerun()
elif stage == "analyze":
    dims = pd.DataFrame({"Dimension": list(country.dimensions.keys()), "Score": list(country.dimensions.values())})
    st.bar_chart(dims, x="Dimension", y="Score")
    st.dataframe(pd.DataFrame([country.context.to_dict()]), hide_index=True)
    if st.button("Continue to Design"):
        sim.advance_stage("design")
        st.rerun()
elif stage == "design":
    left, right = st.columns(2)
    with left:
        st.subheader("Blueprint")
        st.markdown(f"**{country.blueprint.name}**")
        st.write(country.blueprint.description)
        st.caption(country.blueprint.why_bad)
        if st.button("Launch Blueprint", type="secondary"):
            sim.launch_fragile()
            st.rerun()
    with right:
        st.subheader("Anti-Fragile Probes")
        for p in country.probes:
            st.markdown(f"- **{p.name}**: {p.description}")
        if st.button("Launch Probes", type="primary"):
            sim.launch_anti_fragile()
            st.rerun()
elif stage == "monitor":
    if st.button("Move to Refine"):
        sim.advance_stage("refine")
        st.rerun()
elif stage == "refine":
    if st.button("Start New Cycle"):
        sim.start_new_cycle()
        st.rerun()

# --- Live Metrics ---
col1, col2, col3, col4 = st.columns(4)
col1.metric("Month", stats["currentMonth"], help=f"Quarter {stats['currentQuarter']}, Year {stats['currentYear']}")
col2.metric("Wellbeing", stats["wellbeingScore"])
col3.metric("Public Trust", stats["publicTrust"])
col4.metric("Active Risks", len(stats["activeRisks"]))

chart_left, chart_right = st.columns(2)
with chart_left:
    st.subheader("Wellbeing Domains")
    render_radar(stats)
with chart_right:
    st.subheader("Trend")
    if stats["wellbeingHistory"]:
        trend_df = pd.DataFrame(stats["wellbeingHistory"])
        st.line_chart(trend_df, x="month", y=["score", "trust"])
    else:
        st.info("Launch a strategy to start the timeline.")
    if stats["emotionHistory"]:
        emo_df = pd.DataFrame(stats["emotionHistory"])
        st.area_chart(emo_df, x="time", y=list(EMOTIONS))

if stats["probes"]:
    st.subheader("Probes")
    probe_cols = st.columns(len(stats["probes"]))
    for col, probe in zip(probe_cols, stats["probes"]):
        with col:
            render_probe_card(sim, probe)

if stats["effectAttribution"]:
    with st.expander("Effect attribution (last month)"):
        rows = [
            {"Domain": domain, "Source": item["source"], "Type": item["type"],
             "Value": item["value"], "Status": item["status"]}
            for domain, items in stats["effectAttribution"].items()
            for item in items
        ]
        if rows:
            st.dataframe(pd.DataFrame(rows), hide_index=True)
        else:
            st.info("No effects registered this month.")

feed_col, side_col = st.columns([3, 2])
with feed_col:
    st.subheader("Narrative Feed")
    for message in stats["messageFeed"][:15]:
        icon = {1: "🟢", -1: "🔴"}.get(message["sentiment"], "⚪")
        st.markdown(f"{icon} `{message['timestamp']}` **{message['topic']}** - {message['text']}")
with side_col:
    st.subheader("Risk Events")
    if stats["activeRisks"]:
        st.dataframe(pd.DataFrame(stats["activeRisks"])[["name", "modifier", "startMonth", "endMonth"]], hide_index=True)
    else:
        st.caption("No active risk events.")
    if stats["riskEventLog"]:
        with st.expander(f"Risk log ({len(stats['riskEventLog'])})"):
            st.dataframe(pd.DataFrame(stats["riskEventLog"])[["cycle", "name", "triggeredMonth", "status"]], hide_index=True)
    st.subheader("Lessons")
    for lesson in stats["lessons"]:
        st.markdown(f"- **{lesson['source']}** (month {lesson['month']}): {lesson['text']}")

with st.expander(f"Cycle history ({len(stats['cycleHistory'])})"):
    if stats["cycleHistory"]:
        hist_df = pd.DataFrame(stats["cycleHistory"])[["cycle", "strategy", "months", "initialScore", "finalScore"]]
        st.dataframe(hist_df, hide_index=True)
        if st.button("Clear History"):
            sim.clear_cycle_history()
            st.rerun()
    else:
        st.info("Complete a cycle to see it here.")

with st.expander("Export"):
    cycle_doc = sim.export_cycle_data()
    if cycle_doc is not None:
        st.download_button("Download current cycle (JSON)", data=json.dumps(cycle_doc, indent=2),
                           file_name=f"cycle-{country.id}-{stats['cycleCount']}.json")
    st.download_button("Download full history (JSON)", data=json.dumps(sim.export_full_history(), indent=2),
                       file_name="sandbox_history.json")

# --- Tick loop: one month per rerun while running ---
if sim.simulation_running:
    time.sleep(sim.tick_seconds)
    sim.tick()
    st.rerun()
